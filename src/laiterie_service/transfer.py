"""Tabular export (CSV, XLS, PDF) and CSV/XLS import for products and orders."""
from __future__ import annotations

import csv
import logging
import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from io import BytesIO, StringIO
from pathlib import Path
from typing import Any, Dict, List, Optional

import xlrd
import xlwt
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .catalog import ProductCatalog
from .errors import ParseError
from .schemas import Order, Product, ProductPatch, QuantityType

logger = logging.getLogger(__name__)

PRODUCT_COLUMNS = [
    "id",
    "name",
    "description",
    "price",
    "imageUrl",
    "barcode",
    "quantityType",
    "stock",
    "isVisible",
]

ORDER_COLUMNS = [
    "orderId",
    "storeName",
    "userEmail",
    "orderDate",
    "status",
    "totalItems",
    "totalAmount",
    "items",
]

_HEADER_FILL = colors.Color(22 / 255, 160 / 255, 133 / 255)
_ALTERNATE_FILL = colors.Color(245 / 255, 245 / 255, 245 / 255)


class ExportFormat(str, Enum):
    CSV = "csv"
    XLS = "xls"
    PDF = "pdf"


_MEDIA_TYPES = {
    ExportFormat.CSV: "text/csv; charset=utf-8",
    ExportFormat.XLS: "application/vnd.ms-excel",
    ExportFormat.PDF: "application/pdf",
}


@dataclass
class TabularData:
    """Rows keyed by column name; feeds every export writer."""

    title: str
    columns: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)


# ----------------------------------------------------------------------
# Cell formatting
# ----------------------------------------------------------------------
def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _format_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, float):
        return _format_number(value)
    return str(value)


# ----------------------------------------------------------------------
# Table builders
# ----------------------------------------------------------------------
def product_table(products: Iterable[Product], *, printable: bool = False) -> TabularData:
    """Build the catalog table; ``printable`` keeps only the report columns."""

    if printable:
        table = TabularData("Products", ["Name", "Price", "Stock", "Type", "Visibility"])
        for product in products:
            table.rows.append(
                {
                    "Name": product.name,
                    "Price": "N/A" if product.price is None else f"{product.price:.2f}",
                    "Stock": product.stock,
                    "Type": "kg" if product.quantity_type == QuantityType.KG else "unit",
                    "Visibility": "Visible" if product.is_visible else "Hidden",
                }
            )
        return table

    table = TabularData("Products", list(PRODUCT_COLUMNS))
    for product in products:
        table.rows.append(product.model_dump(mode="json", by_alias=True))
    return table


def _describe_items(order: Order) -> str:
    return ", ".join(
        f"{item.product.name} (x{_format_number(item.quantity)})" for item in order.items
    )


def order_table(orders: Iterable[Order], *, printable: bool = False) -> TabularData:
    """Build the orders table from the snapshots stored on each order."""

    if printable:
        table = TabularData("Orders", ["Order ID", "Store", "Date", "Status", "Total"])
    else:
        table = TabularData("Orders", list(ORDER_COLUMNS))
    for order in orders:
        order_date = order.order_date.strftime("%Y-%m-%d %H:%M")
        total = f"{order.computed_total():.2f}"
        if printable:
            table.rows.append(
                {
                    "Order ID": order.id,
                    "Store": order.store_name,
                    "Date": order_date,
                    "Status": order.status.value,
                    "Total": total,
                }
            )
            continue
        table.rows.append(
            {
                "orderId": order.id,
                "storeName": order.store_name,
                "userEmail": order.user_email,
                "orderDate": order_date,
                "status": order.status.value,
                "totalItems": sum(item.quantity for item in order.items),
                "totalAmount": total,
                "items": _describe_items(order),
            }
        )
    return table


# ----------------------------------------------------------------------
# Writers
# ----------------------------------------------------------------------
def to_csv(table: TabularData) -> str:
    buffer = StringIO()
    writer = csv.DictWriter(buffer, fieldnames=table.columns, extrasaction="ignore")
    writer.writeheader()
    for row in table.rows:
        writer.writerow({column: _format_cell(row.get(column)) for column in table.columns})
    return buffer.getvalue()


def to_xls(table: TabularData, *, sheet_name: Optional[str] = None) -> bytes:
    workbook = xlwt.Workbook(encoding="utf-8")
    sheet = workbook.add_sheet(sheet_name or table.title or "Sheet1")
    header_style = xlwt.easyxf("font: bold on")
    for col_index, column in enumerate(table.columns):
        sheet.write(0, col_index, column, header_style)
    for row_index, row in enumerate(table.rows, start=1):
        for col_index, column in enumerate(table.columns):
            value = row.get(column)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                sheet.write(row_index, col_index, value)
            else:
                sheet.write(row_index, col_index, _format_cell(value))
    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def to_pdf(table: TabularData, *, rtl: bool = False) -> bytes:
    """Render a titled report; the header row repeats on every page.

    ``rtl`` only right-aligns cell text.
    """

    buffer = BytesIO()
    document = SimpleDocTemplate(buffer, pagesize=landscape(A4), title=table.title)
    styles = getSampleStyleSheet()
    data = [list(table.columns)] + [
        [_format_cell(row.get(column)) for column in table.columns] for row in table.rows
    ]
    grid = Table(data, repeatRows=1)
    grid.setStyle(
        TableStyle(
            [
                ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
                ("BACKGROUND", (0, 0), (-1, 0), _HEADER_FILL),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTNAME", (0, 1), (-1, -1), "Helvetica"),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, _ALTERNATE_FILL]),
                ("ALIGN", (0, 0), (-1, -1), "RIGHT" if rtl else "LEFT"),
            ]
        )
    )
    document.build([Paragraph(table.title, styles["Title"]), Spacer(1, 12), grid])
    return buffer.getvalue()


def export_table(
    table: TabularData, fmt: ExportFormat, *, rtl: bool = False
) -> tuple[bytes, str]:
    """Serialize ``table`` and return ``(content, media type)``."""

    if fmt == ExportFormat.CSV:
        content = to_csv(table).encode("utf-8")
    elif fmt == ExportFormat.XLS:
        content = to_xls(table)
    else:
        content = to_pdf(table, rtl=rtl)
    return content, _MEDIA_TYPES[fmt]


def timestamped_filename(prefix: str, fmt: ExportFormat) -> str:
    return f"{prefix}_{datetime.now().strftime('%Y-%m-%d')}.{fmt.value}"


# ----------------------------------------------------------------------
# Import
# ----------------------------------------------------------------------
def _normalize_key(value: Any) -> str:
    if value is None:
        return ""
    return str(value).replace("\ufeff", "").strip().lower()


_FIELD_ALIASES: Dict[str, set[str]] = {
    "id": {"id"},
    "name": {"name"},
    "description": {"description"},
    "price": {"price"},
    "imageUrl": {"imageurl", "image_url"},
    "barcode": {"barcode"},
    "quantityType": {"quantitytype", "quantity_type"},
    "stock": {"stock"},
    "isVisible": {"isvisible", "is_visible"},
}

_ALIAS_TO_FIELD: Dict[str, str] = {
    alias: canonical for canonical, aliases in _FIELD_ALIASES.items() for alias in aliases
}


def _canonical_row(raw: Dict[Any, Any]) -> Dict[str, str]:
    record: Dict[str, str] = {}
    for key, value in raw.items():
        canonical = _ALIAS_TO_FIELD.get(_normalize_key(key))
        if canonical is None:
            continue
        record[canonical] = "" if value is None else str(value)
    return record


def parse_csv_rows(text: str) -> List[Dict[str, str]]:
    """Read delimited text with a header row; blank rows and unknown columns are dropped."""

    reader = csv.DictReader(StringIO(text))
    if not reader.fieldnames:
        raise ParseError("Missing header row")
    rows: List[Dict[str, str]] = []
    for row in reader:
        record = _canonical_row(row)
        if not any(value.strip() for value in record.values()):
            continue
        rows.append(record)
    return rows


def parse_xls_rows(data: bytes) -> List[Dict[str, str]]:
    try:
        workbook = xlrd.open_workbook(file_contents=data)
    except Exception as exc:
        raise ParseError("Invalid XLS file") from exc
    if workbook.nsheets == 0:
        raise ParseError("Missing worksheet")
    sheet = workbook.sheet_by_index(0)
    if sheet.nrows == 0:
        raise ParseError("Missing header row")
    header_labels = [str(sheet.cell_value(0, col)).strip() for col in range(sheet.ncols)]
    if not any(header_labels):
        raise ParseError("Missing header row")

    rows: List[Dict[str, str]] = []
    for row_index in range(1, sheet.nrows):
        raw: Dict[str, str] = {}
        for col_index, label in enumerate(header_labels):
            cell = sheet.cell(row_index, col_index)
            if cell.ctype in (xlrd.XL_CELL_EMPTY, xlrd.XL_CELL_BLANK):
                processed = ""
            elif cell.ctype == xlrd.XL_CELL_NUMBER:
                processed = _format_number(cell.value)
            elif cell.ctype == xlrd.XL_CELL_BOOLEAN:
                processed = "true" if cell.value else "false"
            else:
                processed = str(cell.value).strip()
            raw[label] = processed
        record = _canonical_row(raw)
        if not any(value.strip() for value in record.values()):
            continue
        rows.append(record)
    return rows


def read_import_file(filename: str, data: bytes) -> List[Dict[str, str]]:
    """Parse an uploaded ``.csv`` or ``.xls`` file into raw rows."""

    if not data:
        raise ParseError("Empty file")
    if Path(filename or "").suffix.lower() == ".xls":
        return parse_xls_rows(data)
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ParseError("File must be UTF-8 encoded CSV or XLS") from exc
    return parse_csv_rows(text)


def _parse_price(value: str) -> Optional[float]:
    try:
        price = float(value)
    except ValueError:
        return None
    if not math.isfinite(price) or price < 0:
        return None
    return price


def _parse_stock(value: str) -> Optional[float]:
    # kg products may carry fractional stock after a delivery
    stock = _parse_price(value)
    if stock is not None and stock.is_integer():
        return int(stock)
    return stock


def _parse_visible(value: str) -> bool:
    token = value.strip().lower()
    if token in {"false", "0"}:
        return False
    return True


def row_to_patch(row: Dict[str, str]) -> Optional[ProductPatch]:
    """Coerce one raw row; unparseable fields are dropped, empty rows yield ``None``."""

    cells = {key: (value or "").strip() for key, value in row.items()}
    fields: Dict[str, Any] = {}
    for source, target in (
        ("id", "id"),
        ("name", "name"),
        ("description", "description"),
        ("imageUrl", "image_url"),
        ("barcode", "barcode"),
    ):
        if cells.get(source):
            fields[target] = cells[source]
    if cells.get("price"):
        price = _parse_price(cells["price"])
        if price is None:
            logger.debug("Dropping unparseable price %r", cells["price"])
        else:
            fields["price"] = price
    if cells.get("stock"):
        stock = _parse_stock(cells["stock"])
        if stock is None:
            logger.debug("Dropping unparseable stock %r", cells["stock"])
        else:
            fields["stock"] = stock
    quantity_type = cells.get("quantityType", "")
    visible = cells.get("isVisible", "")
    if not fields and not quantity_type and not visible:
        return None
    fields["quantity_type"] = QuantityType.KG if quantity_type.lower() == "kg" else QuantityType.UNIT
    fields["is_visible"] = _parse_visible(visible)
    return ProductPatch(**fields)


def rows_to_patches(rows: Sequence[Dict[str, str]]) -> List[ProductPatch]:
    patches = [row_to_patch(row) for row in rows]
    return [patch for patch in patches if patch is not None]


async def import_products(catalog: ProductCatalog, filename: str, data: bytes) -> int:
    """Parse an uploaded file and bulk-merge it into ``catalog``.

    Returns the number of rows merged.
    """

    patches = rows_to_patches(read_import_file(filename, data))
    if patches:
        await catalog.bulk_merge_products(patches)
    logger.info("Imported %d product rows from %s", len(patches), filename or "upload")
    return len(patches)


__all__ = [
    "ExportFormat",
    "TabularData",
    "PRODUCT_COLUMNS",
    "ORDER_COLUMNS",
    "product_table",
    "order_table",
    "to_csv",
    "to_xls",
    "to_pdf",
    "export_table",
    "timestamped_filename",
    "parse_csv_rows",
    "parse_xls_rows",
    "read_import_file",
    "row_to_patch",
    "rows_to_patches",
    "import_products",
]
