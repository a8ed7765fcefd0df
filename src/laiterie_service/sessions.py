"""Unauthenticated email + store-name sessions."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from .backend import RowStore
from .errors import PersistenceError
from .local_store import SESSION_ID_KEY, LocalStore
from .schemas import UserSession

logger = logging.getLogger(__name__)

TABLE = "sessions"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """Holds the acting identity and whether it is the administrator."""

    def __init__(self, store: RowStore, local: LocalStore, *, admin_email: str) -> None:
        self._store = store
        self._local = local
        self._admin_email = admin_email
        self._session: UserSession | None = None

    @property
    def current(self) -> UserSession | None:
        return self._session

    @property
    def is_admin(self) -> bool:
        return self._session is not None and self._session.is_admin

    def _activate(self, email: str, store_name: str) -> UserSession:
        # Exact, case-sensitive comparison.
        self._session = UserSession(
            email=email, store_name=store_name, is_admin=email == self._admin_email
        )
        return self._session

    async def login(self, email: str, store_name: str) -> UserSession:
        session_id = str(uuid.uuid4())
        now = _now()
        await self._store.insert(
            TABLE,
            {
                "id": session_id,
                "email": email,
                "store_name": store_name,
                "created_at": now,
                "last_active_at": now,
            },
        )
        self._local.set(SESSION_ID_KEY, session_id)
        session = self._activate(email, store_name)
        logger.info("Session %s opened for %s (admin=%s)", session_id, email, session.is_admin)
        return session

    async def logout(self) -> None:
        session_id = self._local.get(SESSION_ID_KEY)
        if session_id:
            try:
                await self._store.delete_by_id(TABLE, session_id)
            except PersistenceError:
                logger.warning("Session %s could not be deleted remotely", session_id)
        self._local.delete(SESSION_ID_KEY)
        self._session = None
        logger.info("Session %s closed", session_id)

    async def restore_session(self) -> UserSession | None:
        """Reactivate the locally remembered session, if the backend still has it."""

        session_id = self._local.get(SESSION_ID_KEY)
        if not session_id:
            return None
        try:
            row = await self._store.select_by_id(TABLE, session_id)
        except PersistenceError:
            logger.warning("Could not restore session %s, logging out locally", session_id)
            row = None
        if row is None:
            self._local.delete(SESSION_ID_KEY)
            self._session = None
            return None
        session = self._activate(row["email"], row["store_name"])
        try:
            await self._store.update_by_id(TABLE, session_id, {"last_active_at": _now()})
        except PersistenceError:
            logger.warning("Could not touch last_active_at of session %s", session_id)
        return session


__all__ = ["SessionManager"]
