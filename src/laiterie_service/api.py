"""FastAPI router configuration.

Routes act on the single process-wide session held by :class:`AppState`; see
:mod:`laiterie_service.state`.
"""
from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Sequence

from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response

from . import schemas
from .config import Settings, get_settings
from .database import create_engine, create_session_factory, create_tables
from .errors import (
    InvalidOrderError,
    NotFoundError,
    ParseError,
    PermissionDeniedError,
    PersistenceError,
    SessionRequiredError,
)
from .state import AppState
from .transfer import ExportFormat, timestamped_filename

router = APIRouter()


def provide_settings() -> Settings:
    """Dependency returning the active :class:`Settings` instance."""

    return get_settings()


def get_state(request: Request) -> AppState:
    state = getattr(request.app.state, "laiterie", None)
    if state is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting")
    return state


def require_session(state: AppState = Depends(get_state)) -> schemas.UserSession:
    session = state.sessions.current
    if session is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not logged in")
    return session


def require_admin(session: schemas.UserSession = Depends(require_session)) -> schemas.UserSession:
    if not session.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Administrator only")
    return session


def _download(content: bytes, media_type: str, filename: str) -> Response:
    response = Response(content, media_type=media_type)
    response.headers["Content-Disposition"] = f"attachment; filename={filename}"
    return response


@router.get("/health", response_model=schemas.HealthStatus, tags=["system"])
async def health_check(settings: Settings = Depends(provide_settings)) -> schemas.HealthStatus:
    return schemas.HealthStatus(environment=settings.environment)


# ----------------------------------------------------------------------
# Session
# ----------------------------------------------------------------------
@router.post("/session", response_model=schemas.UserSession, tags=["session"])
async def login(
    payload: schemas.LoginRequest, state: AppState = Depends(get_state)
) -> schemas.UserSession:
    return await state.login(payload.email.strip(), payload.store_name.strip())


@router.get("/session", response_model=schemas.UserSession, tags=["session"])
async def current_session(
    session: schemas.UserSession = Depends(require_session),
) -> schemas.UserSession:
    return session


@router.delete("/session", status_code=status.HTTP_204_NO_CONTENT, tags=["session"])
async def logout(state: AppState = Depends(get_state)) -> None:
    await state.logout()


# ----------------------------------------------------------------------
# Products
# ----------------------------------------------------------------------
@router.get("/products", response_model=list[schemas.Product], tags=["products"])
async def list_products(
    visible_only: bool = False,
    q: str | None = None,
    state: AppState = Depends(get_state),
) -> Sequence[schemas.Product]:
    return state.catalog.list_products(visible_only=visible_only, search=q)


@router.get("/products/export", tags=["products"])
async def export_products(
    format: ExportFormat = ExportFormat.CSV,
    rtl: bool = False,
    state: AppState = Depends(get_state),
    _: schemas.UserSession = Depends(require_admin),
) -> Response:
    content, media_type = state.export_products(format, rtl=rtl)
    return _download(content, media_type, timestamped_filename("products_export", format))


@router.post("/products/import", response_model=schemas.ImportSummary, tags=["products"])
async def import_products(
    file: UploadFile = File(...),
    state: AppState = Depends(get_state),
    _: schemas.UserSession = Depends(require_admin),
) -> schemas.ImportSummary:
    data = await file.read()
    try:
        imported = await state.import_products(file.filename or "", data)
    except ParseError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return schemas.ImportSummary(
        imported=imported, total_products=len(state.catalog.list_products())
    )


@router.get("/products/{product_id}", response_model=schemas.Product, tags=["products"])
async def get_product(product_id: str, state: AppState = Depends(get_state)) -> schemas.Product:
    product = state.catalog.get_product(product_id)
    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Product {product_id} not found")
    return product


@router.post(
    "/products",
    response_model=schemas.Product,
    status_code=status.HTTP_201_CREATED,
    tags=["products"],
)
async def create_product(
    payload: schemas.ProductCreate,
    state: AppState = Depends(get_state),
    _: schemas.UserSession = Depends(require_admin),
) -> schemas.Product:
    return await state.catalog.add_product(payload)


@router.patch("/products/{product_id}", response_model=schemas.Product, tags=["products"])
async def update_product(
    product_id: str,
    payload: schemas.ProductPatch,
    state: AppState = Depends(get_state),
    _: schemas.UserSession = Depends(require_admin),
) -> schemas.Product:
    try:
        return await state.catalog.update_product(product_id, payload)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.post("/products/{product_id}/visibility", response_model=schemas.Product, tags=["products"])
async def toggle_visibility(
    product_id: str,
    state: AppState = Depends(get_state),
    _: schemas.UserSession = Depends(require_admin),
) -> schemas.Product:
    try:
        return await state.catalog.toggle_visibility(product_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.delete(
    "/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT, tags=["products"]
)
async def delete_product(
    product_id: str,
    state: AppState = Depends(get_state),
    _: schemas.UserSession = Depends(require_admin),
) -> None:
    await state.catalog.delete_product(product_id)


# ----------------------------------------------------------------------
# Orders
# ----------------------------------------------------------------------
@router.get("/orders", response_model=list[schemas.Order], tags=["orders"])
async def list_orders(
    state: AppState = Depends(get_state),
    _: schemas.UserSession = Depends(require_session),
) -> Sequence[schemas.Order]:
    return state.visible_orders()


@router.get("/orders/export", tags=["orders"])
async def export_orders(
    format: ExportFormat = ExportFormat.CSV,
    rtl: bool = False,
    state: AppState = Depends(get_state),
    _: schemas.UserSession = Depends(require_session),
) -> Response:
    content, media_type = state.export_orders(format, rtl=rtl)
    return _download(content, media_type, timestamped_filename("orders_export", format))


@router.post(
    "/orders",
    response_model=schemas.Order,
    status_code=status.HTTP_201_CREATED,
    tags=["orders"],
)
async def submit_order(
    payload: schemas.OrderSubmission,
    state: AppState = Depends(get_state),
    _: schemas.UserSession = Depends(require_session),
) -> schemas.Order:
    try:
        return await state.submit_order(payload.items)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc


@router.put("/orders/{order_id}/status", response_model=schemas.StatusChangeOut, tags=["orders"])
async def set_order_status(
    order_id: str,
    payload: schemas.StatusUpdate,
    state: AppState = Depends(get_state),
    _: schemas.UserSession = Depends(require_admin),
) -> schemas.StatusChangeOut:
    try:
        order, reconciliation = await state.ledger.set_order_status(order_id, payload.status)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return schemas.StatusChangeOut(
        order=order,
        reconciliation=reconciliation.summary() if reconciliation is not None else None,
    )


# ----------------------------------------------------------------------
# Dashboard
# ----------------------------------------------------------------------
@router.get(
    "/dashboard/notifications", response_model=schemas.NotificationStatus, tags=["dashboard"]
)
async def dashboard_notifications(
    state: AppState = Depends(get_state),
    _: schemas.UserSession = Depends(require_admin),
) -> schemas.NotificationStatus:
    return schemas.NotificationStatus(
        has_new_pending_orders=state.ledger.has_new_pending_orders(),
        last_viewed_at=state.ledger.last_dashboard_view(),
    )


@router.post("/dashboard/viewed", response_model=schemas.NotificationStatus, tags=["dashboard"])
async def mark_dashboard_viewed(
    state: AppState = Depends(get_state),
    _: schemas.UserSession = Depends(require_admin),
) -> schemas.NotificationStatus:
    viewed_at = state.ledger.mark_dashboard_viewed()
    return schemas.NotificationStatus(has_new_pending_orders=False, last_viewed_at=viewed_at)


async def _persistence_error_handler(request: Request, exc: PersistenceError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": str(exc)})


async def _session_required_handler(request: Request, exc: SessionRequiredError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_401_UNAUTHORIZED, content={"detail": str(exc)})


async def _permission_denied_handler(request: Request, exc: PermissionDeniedError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": str(exc)})


async def _invalid_order_handler(request: Request, exc: InvalidOrderError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content={"detail": str(exc)})


def create_app(settings: Settings | None = None, state: AppState | None = None) -> FastAPI:
    """Build the application.

    Without an explicit ``state`` the lifespan opens the database, creates the
    tables and loads the catalog, orders and remembered session.
    """

    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if app.state.laiterie is not None:
            yield
            return
        engine = create_engine(settings)
        await create_tables(engine)
        app.state.laiterie = AppState(settings, create_session_factory(engine))
        await app.state.laiterie.startup()
        try:
            yield
        finally:
            await engine.dispose()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.state.laiterie = state
    app.dependency_overrides[provide_settings] = lambda: settings
    app.add_exception_handler(PersistenceError, _persistence_error_handler)
    app.add_exception_handler(SessionRequiredError, _session_required_handler)
    app.add_exception_handler(PermissionDeniedError, _permission_denied_handler)
    app.add_exception_handler(InvalidOrderError, _invalid_order_handler)
    app.include_router(router)
    return app


app = create_app()


__all__ = ["app", "create_app"]
