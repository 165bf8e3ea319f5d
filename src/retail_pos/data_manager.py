"""Data access layer for the retail POS.

This module provides low-level helpers that read from and write to the
master workbook. Business logic belongs elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending or updating
   individual rows.
4. Units of work: every mutation goes through a :class:`WorkbookTransaction`
   journal so a failed multi-row write can be undone as a whole.
"""


from __future__ import annotations

import configparser
import os
import re
import tempfile
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_FINANCIAL_YEAR_START_MONTH,
    DEFAULT_INVOICE_PREFIX,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
PRODUCT_VARIANTS_SHEET = SheetName.PRODUCT_VARIANTS.value
SALES_SHEET = SheetName.SALES.value
SALE_LINES_SHEET = SheetName.SALE_LINES.value
INVOICE_SEQUENCE_SHEET = SheetName.INVOICE_SEQUENCE.value

DEFAULT_UTC_OFFSET = "+05:30"
_UTC_OFFSET_PATTERN = re.compile(r"^([+-])(\d{2}):(\d{2})$")


@dataclass(frozen=True)
class CompanyInfo:
    """Seller details printed on every invoice."""

    name: str = "Kings Mobile"
    address: str = "Shop No. 123, Mobile Market, Tamil Nadu, India"
    gstin: str = "33AAAAA0000A1Z5"
    phone: str = "+91-9876543210"
    email: str = "info@kingsmobile.com"
    state_code: str = "33"
    state: str = "Tamil Nadu"


@dataclass(frozen=True)
class CustomerInfo:
    """Optional buyer details captured with a sale."""

    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    gstin: Optional[str] = None
    state: Optional[str] = None


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    schema_version: str
    utc_offset: timezone = timezone(timedelta(hours=5, minutes=30))
    company: CompanyInfo = field(default_factory=CompanyInfo)
    invoice_prefix: str = DEFAULT_INVOICE_PREFIX
    financial_year_start_month: int = DEFAULT_FINANCIAL_YEAR_START_MONTH


@dataclass(frozen=True)
class VariantAttribute:
    """One variant attribute of a product, e.g. ``color`` = ``Black``."""

    name: str
    value: str


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet.

    ``variants`` is loaded from the ``ProductVariants`` sheet, one row per
    attribute, and kept in insertion order.
    """

    product_id: str
    name: str
    brand: str
    model: str
    category: str
    selling_price: Decimal
    gst_rate: Decimal
    quantity: int
    low_stock_threshold: int
    barcode: Optional[str] = None
    purchase_price: Decimal = Decimal("0.00")
    imei: Optional[str] = None
    variants: Tuple[VariantAttribute, ...] = ()

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.low_stock_threshold


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a row from the ``Sales`` sheet."""

    sale_id: str
    invoice_number: str
    timestamp_iso: str
    payment_mode: str
    subtotal: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    gst_amount: Decimal
    is_inter_state: bool
    customer: CustomerInfo
    notes: Optional[str]


@dataclass(frozen=True)
class SaleLineRow:
    """In-memory view of a row from the ``SaleLines`` sheet.

    Product descriptors are copied at sale time so the line stays valid after
    the catalog entry is edited.
    """

    sale_id: str
    line_number: int
    product_id: str
    product_name: str
    brand: str
    model: str
    category: str
    quantity: int
    price_at_sale: Decimal
    gst_at_sale: Decimal


class WorkbookTransaction:
    """Journal of worksheet edits that can be undone as a single unit.

    Each write records an undo callback. :meth:`rollback` replays them in
    reverse order, so overwritten cells get their old values back and appended
    or deleted rows are undone. A half-applied sale never reaches
    :func:`save_workbook`.
    """

    def __init__(self, workbook: Workbook) -> None:
        self.workbook = workbook
        self._undo: List[Callable[[], None]] = []

    @property
    def pending(self) -> int:
        return len(self._undo)

    def write_cell(self, sheet_name: str, row: int, column: int, value: Any) -> None:
        cell = self.workbook[sheet_name].cell(row=row, column=column)
        previous = cell.value
        cell.value = value

        def undo() -> None:
            cell.value = previous

        self._undo.append(undo)

    def append_row(self, sheet_name: str, values: Sequence[object]) -> int:
        sheet = self.workbook[sheet_name]
        sheet.append(list(values))
        row_index = sheet.max_row

        def undo() -> None:
            sheet.delete_rows(row_index, 1)

        self._undo.append(undo)
        return row_index

    def delete_row(self, sheet_name: str, row: int) -> None:
        sheet = self.workbook[sheet_name]
        values = [cell.value for cell in sheet[row]]
        sheet.delete_rows(row, 1)

        def undo() -> None:
            sheet.insert_rows(row, 1)
            for column, value in enumerate(values, start=1):
                sheet.cell(row=row, column=column, value=value)

        self._undo.append(undo)

    def rollback(self) -> None:
        log.warning("Rolling back %d pending workbook edits", len(self._undo))
        while self._undo:
            self._undo.pop()()

    def commit(self) -> None:
        self._undo.clear()


@contextmanager
def open_transaction(workbook: Workbook) -> Iterator[WorkbookTransaction]:
    """Yield a :class:`WorkbookTransaction` that rolls back on any exception.

    Edits made through the yielded journal are kept when the block exits
    normally and undone before the exception propagates otherwise.
    """

    transaction = WorkbookTransaction(workbook)
    try:
        yield transaction
    except BaseException:
        transaction.rollback()
        raise
    transaction.commit()


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_utc_offset(raw: str) -> timezone:
    """Convert an offset such as ``+05:30`` into a fixed :class:`timezone`."""

    match = _UTC_OFFSET_PATTERN.match(raw.strip())
    if match is None:
        raise ValueError(f"Invalid UtcOffset '{raw}', expected e.g. +05:30")
    sign, hours, minutes = match.groups()
    delta = timedelta(hours=int(hours), minutes=int(minutes))
    return timezone(-delta if sign == "-" else delta)


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System] DataFile`` and ``[System] SchemaVersion`` are mandatory. The
    ``[Company]`` and ``[Invoice]`` sections are optional and fall back to the
    reference shop defaults. Relative data file paths are expanded against
    ``base_path`` when provided, or against the current working directory.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
        ValueError: If ``UtcOffset`` or ``FinancialYearStartMonth`` is
            malformed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    utc_offset = parse_utc_offset(parser.get("System", "UtcOffset", fallback=DEFAULT_UTC_OFFSET))

    defaults = CompanyInfo()
    company = CompanyInfo(
        name=parser.get("Company", "Name", fallback=defaults.name),
        address=parser.get("Company", "Address", fallback=defaults.address),
        gstin=parser.get("Company", "GSTIN", fallback=defaults.gstin),
        phone=parser.get("Company", "Phone", fallback=defaults.phone),
        email=parser.get("Company", "Email", fallback=defaults.email),
        state_code=parser.get("Company", "StateCode", fallback=defaults.state_code),
        state=parser.get("Company", "State", fallback=defaults.state),
    )

    start_month = parser.getint(
        "Invoice", "FinancialYearStartMonth", fallback=DEFAULT_FINANCIAL_YEAR_START_MONTH)
    if not 1 <= start_month <= 12:
        raise ValueError(f"FinancialYearStartMonth must be 1-12, got {start_month}")

    return ConfigSettings(
        data_file=data_file_path,
        schema_version=schema_version,
        utc_offset=utc_offset,
        company=company,
        invoice_prefix=parser.get("Invoice", "Prefix", fallback=DEFAULT_INVOICE_PREFIX),
        financial_year_start_month=start_month,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the master workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    The workbook is written to a temporary file in the destination folder and
    then moved over the target with :func:`os.replace`, so readers observe
    either the previous file or the complete new one.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.stem}-", suffix=dest.suffix, dir=dest.parent)
    os.close(fd)
    try:
        workbook.save(tmp_name)
        os.replace(tmp_name, dest)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet_rows(workbook: Workbook, sheet_name: str) -> Iterator[tuple]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet.

    The iterator skips the header row and any fully empty rows, converting
    each remaining row via :func:`deserialize_product`.

    Args:
        workbook (Workbook): Workbook containing the ``Products`` sheet.

    Yields:
        ProductRow: One structured row for each meaningful record in the sheet.
    """

    variants = variants_by_product(workbook)
    for raw in _iter_sheet_rows(workbook, PRODUCTS_SHEET):
        product = deserialize_product(raw)
        yield replace(product, variants=variants.get(product.product_id, ()))


def variants_by_product(workbook: Workbook) -> Dict[str, Tuple[VariantAttribute, ...]]:
    """Group the ``ProductVariants`` rows by product id, keeping sheet order."""

    if PRODUCT_VARIANTS_SHEET not in workbook.sheetnames:
        return {}
    grouped: Dict[str, List[VariantAttribute]] = {}
    for raw in _iter_sheet_rows(workbook, PRODUCT_VARIANTS_SHEET):
        product_id, attribute = deserialize_product_variant(raw)
        grouped.setdefault(product_id, []).append(attribute)
    return {product_id: tuple(attributes) for product_id, attributes in grouped.items()}


def iter_sales(workbook: Workbook) -> Iterable[SaleRow]:
    """Stream sale headers from the ``Sales`` worksheet in insertion order."""

    for raw in _iter_sheet_rows(workbook, SALES_SHEET):
        yield deserialize_sale(raw)


def iter_sale_lines(workbook: Workbook) -> Iterable[SaleLineRow]:
    """Stream sale lines from the ``SaleLines`` worksheet in insertion order."""

    for raw in _iter_sheet_rows(workbook, SALE_LINES_SHEET):
        yield deserialize_sale_line(raw)


def append_product(transaction: WorkbookTransaction, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet.

    Args:
        transaction (WorkbookTransaction): Active unit of work.
        record (ProductRow): Structured product data ready for persistence.
    """

    transaction.append_row(PRODUCTS_SHEET, serialize_product(record))
    for attribute in record.variants:
        transaction.append_row(PRODUCT_VARIANTS_SHEET, serialize_product_variant(record.product_id, attribute))


def replace_product_variants(
    transaction: WorkbookTransaction,
    product_id: str,
    variants: Sequence[VariantAttribute],
) -> None:
    """Swap the stored variant attributes of ``product_id`` for ``variants``.

    Existing ``ProductVariants`` rows for the product are deleted bottom-up so
    earlier row indices stay valid, then the new attributes are appended.
    Both steps go through the transaction journal.
    """

    sheet = transaction.workbook[PRODUCT_VARIANTS_SHEET]
    stale = [
        row_idx
        for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2)
        if row and row[0] is not None and str(row[0]) == product_id
    ]
    for row_idx in reversed(stale):
        transaction.delete_row(PRODUCT_VARIANTS_SHEET, row_idx)
    for attribute in variants:
        transaction.append_row(PRODUCT_VARIANTS_SHEET, serialize_product_variant(product_id, attribute))


def append_sale(transaction: WorkbookTransaction, record: SaleRow) -> None:
    """Append a sale header to the ``Sales`` worksheet."""

    transaction.append_row(SALES_SHEET, serialize_sale(record))


def append_sale_line(transaction: WorkbookTransaction, record: SaleLineRow) -> None:
    """Append a single sale line to the ``SaleLines`` worksheet."""

    transaction.append_row(SALE_LINES_SHEET, serialize_sale_line(record))


def header_map(workbook: Workbook, sheet_name: str) -> dict[str, int]:
    """Return a mapping of header titles to 1-based column indices."""

    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def update_product(transaction: WorkbookTransaction, product_id: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing product.

    The function locates the row whose ``ProductID`` matches ``product_id``,
    validates that each requested field exists in the header row, and then
    writes the provided values through the transaction journal. Only the
    specified fields are modified.

    Args:
        transaction (WorkbookTransaction): Active unit of work.
        product_id (str): Identifier used to locate the target row.
        field_values (dict[str, Any]): Mapping of column names to replacement
            values.

    Raises:
        KeyError: If the product or any referenced column cannot be found.
    """

    workbook = transaction.workbook
    row_index = locate_row(workbook, PRODUCTS_SHEET, "ProductID", product_id)
    if row_index is None:
        raise KeyError(f"Product not found: {product_id}")

    columns = header_map(workbook, PRODUCTS_SHEET)
    for name in field_values:
        if name not in columns:
            raise KeyError(f"Unknown product field: {name}")
    for name, value in field_values.items():
        transaction.write_cell(PRODUCTS_SHEET, row_index, columns[name], value)


def decrement_product_quantity(transaction: WorkbookTransaction, product_id: str, quantity: int) -> Optional[int]:
    """Conditionally subtract ``quantity`` from a product's on-hand stock.

    The current value is read and the decremented value written in one call;
    nothing is written when the result would drop below zero. Callers hold the
    runtime lock for the surrounding unit of work, so no other writer can slip
    between the read and the write.

    Args:
        transaction (WorkbookTransaction): Active unit of work.
        product_id (str): Product whose stock is reduced.
        quantity (int): Positive amount to subtract.

    Returns:
        int | None: Remaining quantity, or ``None`` when stock was
            insufficient and the row was left untouched.

    Raises:
        KeyError: If the product does not exist.
    """

    workbook = transaction.workbook
    row_index = locate_row(workbook, PRODUCTS_SHEET, "ProductID", product_id)
    if row_index is None:
        raise KeyError(f"Product not found: {product_id}")

    column = header_map(workbook, PRODUCTS_SHEET)["Quantity"]
    current = int(workbook[PRODUCTS_SHEET].cell(row=row_index, column=column).value or 0)
    remaining = current - quantity
    if remaining < 0:
        return None
    transaction.write_cell(PRODUCTS_SHEET, row_index, column, remaining)
    return remaining


def increment_product_quantity(transaction: WorkbookTransaction, product_id: str, quantity: int) -> int:
    """Add ``quantity`` to a product's on-hand stock and return the new value."""

    workbook = transaction.workbook
    row_index = locate_row(workbook, PRODUCTS_SHEET, "ProductID", product_id)
    if row_index is None:
        raise KeyError(f"Product not found: {product_id}")

    column = header_map(workbook, PRODUCTS_SHEET)["Quantity"]
    current = int(workbook[PRODUCTS_SHEET].cell(row=row_index, column=column).value or 0)
    updated = current + quantity
    transaction.write_cell(PRODUCTS_SHEET, row_index, column, updated)
    return updated


def next_invoice_sequence(
    transaction: WorkbookTransaction,
    financial_year: str,
    *,
    seed: Optional[Callable[[], int]] = None,
) -> int:
    """Increment and return the invoice counter for ``financial_year``.

    The ``InvoiceSequence`` sheet stores one row per financial-year key with
    the last number issued. When the key has no row yet, ``seed`` is called to
    obtain the number of invoices already issued in that year (zero when
    omitted) and the new row starts from there.

    Args:
        transaction (WorkbookTransaction): Active unit of work.
        financial_year (str): Key such as ``"2024-25"``.
        seed (Callable[[], int] | None): Lazily evaluated starting count.

    Returns:
        int: The sequence number reserved for the caller.
    """

    workbook = transaction.workbook
    row_index = locate_row(workbook, INVOICE_SEQUENCE_SHEET, "FinancialYear", financial_year)
    if row_index is None:
        start = seed() if seed is not None else 0
        number = start + 1
        transaction.append_row(INVOICE_SEQUENCE_SHEET, [financial_year, number])
        return number

    column = header_map(workbook, INVOICE_SEQUENCE_SHEET)["LastNumber"]
    current = int(workbook[INVOICE_SEQUENCE_SHEET].cell(row=row_index, column=column).value or 0)
    number = current + 1
    transaction.write_cell(INVOICE_SEQUENCE_SHEET, row_index, column, number)
    return number


def count_sales_between(workbook: Workbook, start: datetime, end: datetime) -> int:
    """Count sales whose timestamp falls in the half-open window ``[start, end)``."""

    count = 0
    for sale in iter_sales(workbook):
        moment = datetime.fromisoformat(sale.timestamp_iso)
        if start <= moment < end:
            count += 1
    return count


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column. Cell values are
            compared as text so identifiers Excel stored as numbers still
            match.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    columns = header_map(workbook, sheet_name)
    if key_column not in columns:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = columns[key_column]
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering."""

    return [
        record.product_id,
        record.name,
        record.brand,
        record.model,
        record.category,
        record.selling_price,
        record.gst_rate,
        record.quantity,
        record.low_stock_threshold,
        record.barcode,
        record.purchase_price,
        record.imei,
    ]


def serialize_product_variant(product_id: str, attribute: VariantAttribute) -> list[object]:
    """Convert one variant attribute into the ``ProductVariants`` column ordering."""

    return [product_id, attribute.name, attribute.value]


def serialize_sale(record: SaleRow) -> list[object]:
    """Convert a sale dataclass into the ``Sales`` column ordering.

    The nested :class:`CustomerInfo` is flattened into one column per field.
    """

    customer = record.customer
    return [
        record.sale_id,
        record.invoice_number,
        record.timestamp_iso,
        record.payment_mode,
        record.subtotal,
        record.discount_amount,
        record.total_amount,
        record.gst_amount,
        record.is_inter_state,
        customer.name,
        customer.phone,
        customer.address,
        customer.gstin,
        customer.state,
        record.notes,
    ]


def serialize_sale_line(record: SaleLineRow) -> list[object]:
    """Convert a sale line dataclass into the ``SaleLines`` column ordering."""

    return [
        record.sale_id,
        record.line_number,
        record.product_id,
        record.product_name,
        record.brand,
        record.model,
        record.category,
        record.quantity,
        record.price_at_sale,
        record.gst_at_sale,
    ]


def _to_decimal(raw: object, default: str = "0.00") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_text(raw: object) -> str:
    return str(raw) if raw is not None else ""


def _to_optional_text(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def _pad(raw_row: Sequence[object], width: int) -> tuple:
    # sheets created before a column was added yield shorter rows
    values = tuple(raw_row[:width])
    return values + (None,) * (width - len(values))


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Numeric money columns become :class:`~decimal.Decimal` instances, stock
    columns become ``int`` and text columns are coerced to ``str`` to avoid
    surprises caused by Excel automatically interpreting numbers.
    """

    (
        product_id,
        name,
        brand,
        model,
        category,
        selling_price,
        gst_rate,
        quantity,
        low_stock_threshold,
        barcode,
        purchase_price,
        imei,
    ) = _pad(raw_row, 12)

    return ProductRow(
        product_id=str(product_id),
        name=_to_text(name),
        brand=_to_text(brand),
        model=_to_text(model),
        category=_to_text(category),
        selling_price=_to_decimal(selling_price),
        gst_rate=_to_decimal(gst_rate, "0"),
        quantity=int(quantity or 0),
        low_stock_threshold=int(low_stock_threshold or 0),
        barcode=_to_optional_text(barcode),
        purchase_price=_to_decimal(purchase_price),
        imei=_to_optional_text(imei),
    )


def deserialize_product_variant(raw_row: Sequence[object]) -> tuple[str, VariantAttribute]:
    """Convert a raw ``ProductVariants`` row into its product id and attribute."""

    product_id, name, value = _pad(raw_row, 3)
    return str(product_id), VariantAttribute(name=_to_text(name), value=_to_text(value))


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    """Convert a raw ``Sales`` row into a :class:`SaleRow`."""

    (
        sale_id,
        invoice_number,
        timestamp_iso,
        payment_mode,
        subtotal,
        discount_amount,
        total_amount,
        gst_amount,
        is_inter_state,
        customer_name,
        customer_phone,
        customer_address,
        customer_gstin,
        customer_state,
        notes,
    ) = raw_row[:15]

    return SaleRow(
        sale_id=str(sale_id),
        invoice_number=_to_text(invoice_number),
        timestamp_iso=_to_text(timestamp_iso),
        payment_mode=_to_text(payment_mode),
        subtotal=_to_decimal(subtotal),
        discount_amount=_to_decimal(discount_amount),
        total_amount=_to_decimal(total_amount),
        gst_amount=_to_decimal(gst_amount),
        is_inter_state=bool(is_inter_state),
        customer=CustomerInfo(
            name=_to_optional_text(customer_name),
            phone=_to_optional_text(customer_phone),
            address=_to_optional_text(customer_address),
            gstin=_to_optional_text(customer_gstin),
            state=_to_optional_text(customer_state),
        ),
        notes=_to_optional_text(notes),
    )


def deserialize_sale_line(raw_row: Sequence[object]) -> SaleLineRow:
    """Convert a raw ``SaleLines`` row into a :class:`SaleLineRow`."""

    (
        sale_id,
        line_number,
        product_id,
        product_name,
        brand,
        model,
        category,
        quantity,
        price_at_sale,
        gst_at_sale,
    ) = raw_row[:10]

    return SaleLineRow(
        sale_id=str(sale_id),
        line_number=int(line_number or 0),
        product_id=str(product_id),
        product_name=_to_text(product_name),
        brand=_to_text(brand),
        model=_to_text(model),
        category=_to_text(category),
        quantity=int(quantity or 0),
        price_at_sale=_to_decimal(price_at_sale),
        gst_at_sale=_to_decimal(gst_at_sale, "0"),
    )
