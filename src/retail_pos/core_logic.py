"""Business logic layer for the retail POS.

This module owns the rules around the catalog and the GST sale transaction.
It consumes the Data Access Layer (DAL) for all I/O while ensuring every
mutation passes through a single journaled unit of work guarded by the
runtime lock.
"""

from __future__ import annotations

import math
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timezone
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from openpyxl.workbook import Workbook

from . import data_manager, gst, log
from .constants import (
    DEFAULT_GST_RATE,
    DEFAULT_LOW_STOCK_THRESHOLD,
    DEFAULT_PAGE_SIZE,
    EXPECTED_SCHEMA_VERSION,
    IMEI_LENGTH,
    MAX_NOTES_LENGTH,
    MAX_PAGE_SIZE,
    PRODUCT_SEARCH_LIMIT,
    PaymentMode,
)


PHONE_PATTERN = re.compile(r"^\+?[\d\s\-\(\)]{10,15}$")
GSTIN_PATTERN = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z]{1}[1-9A-Z]{1}Z[0-9A-Z]{1}$")

# Keyword names accepted by update_product mapped to Products sheet headers.
PRODUCT_FIELD_COLUMNS: Mapping[str, str] = {
    "name": "Name",
    "brand": "Brand",
    "model": "Model",
    "category": "Category",
    "selling_price": "SellingPrice",
    "gst_rate": "GstRate",
    "low_stock_threshold": "LowStockThreshold",
    "barcode": "Barcode",
    "purchase_price": "PurchasePrice",
    "imei": "Imei",
}

# Quantity changes only through restock and sales.
PRODUCT_UPDATABLE_FIELDS = frozenset(PRODUCT_FIELD_COLUMNS) | {"variants"}

VariantSpec = Union[Mapping[str, str], Iterable[data_manager.VariantAttribute]]


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class ValidationError(BusinessRuleViolation, ValueError):
    """Raised when a request is malformed or misses required fields."""


class NotFoundError(BusinessRuleViolation):
    """Raised when a referenced product or sale is unknown."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a sale asks for more units than are on hand."""

    def __init__(self, product_id: str, product_name: str, available: int, requested: int) -> None:
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Requested: {requested}"
        )


class TransactionFailure(RuntimeError):
    """Raised when an unexpected error aborts a unit of work after it started.

    The original exception is chained as ``__cause__``; every edit made in
    the unit of work has been rolled back by the time this is raised.
    """


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    @property
    def lock(self) -> threading.RLock:
        return self._lock


@dataclass(frozen=True)
class SaleLineRequest:
    """One cart line: which product and how many units."""

    product_id: str
    quantity: int


@dataclass(frozen=True)
class SaleCommand:
    """User intent for creating a sale."""

    lines: Tuple[SaleLineRequest, ...]
    payment_mode: PaymentMode
    discount_amount: Decimal = Decimal("0")
    is_inter_state: bool = False
    customer: Optional[data_manager.CustomerInfo] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class LineBreakdown:
    """Money and tax figures for a single sale line."""

    line_number: int
    line_total: Decimal
    discount_share: Decimal
    discounted_total: Decimal
    gst: gst.GstBreakdown


@dataclass(frozen=True)
class SaleTotals:
    """Aggregated figures for a whole sale."""

    subtotal: Decimal
    discount_amount: Decimal
    total_amount: Decimal
    gst_amount: Decimal
    lines: Tuple[LineBreakdown, ...]


@dataclass(frozen=True)
class SaleQuote:
    """Priced cart returned by :func:`preview_sale`; nothing is persisted."""

    lines: Tuple[data_manager.SaleLineRow, ...]
    totals: SaleTotals


@dataclass(frozen=True)
class SaleRecord:
    """A persisted sale with its lines and recomputed breakdown."""

    sale: data_manager.SaleRow
    lines: Tuple[data_manager.SaleLineRow, ...]
    totals: SaleTotals


@dataclass(frozen=True)
class SaleFilter:
    """Query parameters for :func:`list_sales`."""

    start_date: Optional[date] = None
    end_date: Optional[date] = None
    payment_mode: Optional[PaymentMode] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE


@dataclass(frozen=True)
class SalePage:
    """One page of sales plus pagination metadata."""

    sales: Tuple[data_manager.SaleRow, ...]
    current_page: int
    page_size: int
    total_pages: int
    total_count: int
    has_next: bool
    has_prev: bool


def _resolve_timestamp(candidate: Optional[datetime], tz: timezone = UTC) -> datetime:
    """Resolve optional timestamps into consistent, timezone-aware values.

    Args:
        candidate (datetime | None): Caller-provided timestamp. Naive values
            are interpreted in ``tz``.
        tz (timezone): Offset applied to naive timestamps.

    Returns:
        datetime: ``candidate`` when provided, otherwise the current UTC
            datetime generated via :func:`datetime.now`.
    """

    if candidate is None:
        return datetime.now(UTC)
    if candidate.tzinfo is None:
        return candidate.replace(tzinfo=tz)
    return candidate


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name."""

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Missing buckets are ignored so callers can request targeted invalidation
    without checking what has been populated.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the product cache bucket on demand.

    Returns:
        dict[str, Any]: Bucket containing ``all`` products plus ``by_id``,
            ``by_barcode`` and ``by_imei`` lookup dictionaries.
    """

    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = list(data_manager.iter_products(context.workbook))
        bucket["all"] = all_products
        bucket["by_id"] = {product.product_id: product for product in all_products}
        bucket["by_barcode"] = {
            product.barcode: product for product in all_products if product.barcode
        }
        bucket["by_imei"] = {product.imei: product for product in all_products if product.imei}
        log.debug("Populated products cache with %d entries", len(all_products))
    return bucket


def _ensure_sales_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the sales cache bucket with headers and grouped lines."""

    bucket = _get_cache_bucket(context, "sales")
    if "all" not in bucket:
        all_sales = list(data_manager.iter_sales(context.workbook))
        lines_by_sale: Dict[str, List[data_manager.SaleLineRow]] = {}
        for line in data_manager.iter_sale_lines(context.workbook):
            lines_by_sale.setdefault(line.sale_id, []).append(line)
        for lines in lines_by_sale.values():
            lines.sort(key=lambda line: line.line_number)
        bucket["all"] = all_sales
        bucket["by_id"] = {sale.sale_id: sale for sale in all_sales}
        bucket["lines"] = lines_by_sale
        log.debug(
            "Populated sales cache with %d sales and %d line groups",
            len(all_sales),
            len(lines_by_sale),
        )
    return bucket


@contextmanager
def _unit_of_work(context: RuntimeContext) -> Iterator[data_manager.WorkbookTransaction]:
    """Hold the runtime lock and yield a rollback-on-error transaction.

    Caches are dropped on exit whatever the outcome so later reads see the
    committed (or restored) workbook.
    """

    with context.lock:
        try:
            with data_manager.open_transaction(context.workbook) as transaction:
                yield transaction
        finally:
            _invalidate_cache(context, "products", "sales")


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def list_products(
    context: RuntimeContext,
    *,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    low_stock: bool = False,
) -> List[data_manager.ProductRow]:
    """Return cached product rows, newest first.

    ``category`` and ``brand`` must match exactly when given, and
    ``low_stock`` keeps only products at or below their threshold.
    """
    products = list(reversed(_ensure_products_cache(context)["all"]))
    if category:
        products = [product for product in products if product.category == category]
    if brand:
        products = [product for product in products if product.brand == brand]
    if low_stock:
        products = [product for product in products if product.is_low_stock]
    return products


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        NotFoundError: If ``product_id`` is absent from the workbook.
    """
    cache = _ensure_products_cache(context)
    try:
        return cache["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise NotFoundError(f"Product with ID {product_id} not found") from exc


def get_product_by_barcode(context: RuntimeContext, barcode: str) -> data_manager.ProductRow:
    """Resolve a product record by its barcode.

    Raises:
        NotFoundError: If no product carries ``barcode``.
    """
    cache = _ensure_products_cache(context)
    try:
        return cache["by_barcode"][barcode]
    except KeyError as exc:
        log.warning("Product lookup failed for barcode '%s'", barcode)
        raise NotFoundError(f"Product with barcode {barcode} not found") from exc


def get_product_by_imei(context: RuntimeContext, imei: str) -> data_manager.ProductRow:
    cache = _ensure_products_cache(context)
    try:
        return cache["by_imei"][imei]
    except KeyError as exc:
        log.warning("Product lookup failed for IMEI '%s'", imei)
        raise NotFoundError(f"Product with IMEI {imei} not found") from exc


def search_products(
    context: RuntimeContext,
    *,
    query: Optional[str] = None,
    barcode: Optional[str] = None,
    category: Optional[str] = None,
    in_stock: bool = False,
    limit: int = PRODUCT_SEARCH_LIMIT,
) -> List[data_manager.ProductRow]:
    """Find products for the sales counter.

    A ``barcode`` is an exact match and takes precedence over ``query``,
    which is a case-insensitive substring match on name, brand or model.
    ``category`` must match exactly and ``in_stock`` keeps only products with
    a positive quantity. Results are ordered by quantity (highest first) then
    name and truncated to ``limit``.

    Raises:
        ValidationError: If ``query`` is shorter than two characters or
            ``barcode`` shorter than three.
    """
    if query is not None and len(query.strip()) < 2:
        raise ValidationError("Search query must be at least 2 characters")
    if barcode is not None and len(barcode.strip()) < 3:
        raise ValidationError("Barcode must be at least 3 characters")

    results = list(_ensure_products_cache(context)["all"])
    if barcode:
        results = [product for product in results if product.barcode == barcode.strip()]
    elif query:
        needle = query.strip().casefold()
        results = [
            product
            for product in results
            if needle in product.name.casefold()
            or needle in product.brand.casefold()
            or needle in product.model.casefold()
        ]
    if category:
        results = [product for product in results if product.category == category]
    if in_stock:
        results = [product for product in results if product.quantity > 0]

    results.sort(key=lambda product: (-product.quantity, product.name))
    return results[:limit]


def list_low_stock_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return products at or below their low-stock threshold, emptiest first."""
    low = [product for product in _ensure_products_cache(context)["all"] if product.is_low_stock]
    low.sort(key=lambda product: (product.quantity, product.name))
    return low


def add_product(
    context: RuntimeContext,
    *,
    product_id: str,
    name: str,
    selling_price: Decimal,
    brand: str = "",
    model: str = "",
    category: str = "",
    purchase_price: Decimal = Decimal("0"),
    gst_rate: Decimal = DEFAULT_GST_RATE,
    quantity: int = 0,
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD,
    barcode: Optional[str] = None,
    imei: Optional[str] = None,
    variants: Optional[VariantSpec] = None,
) -> data_manager.ProductRow:
    """Validate and append a new catalog product.

    ``variants`` may be a mapping such as ``{"color": "Black"}`` or a
    sequence of :class:`~retail_pos.data_manager.VariantAttribute`; the
    attributes are stored one per row on the ``ProductVariants`` sheet.

    Raises:
        ValidationError: If identifiers are blank or numbers are out of range.
        BusinessRuleViolation: If the product id, barcode or IMEI is already
            used.
    """
    if not product_id or not product_id.strip():
        raise ValidationError("Product ID is required")
    if not name or not name.strip():
        raise ValidationError("Product name is required")
    require_nonnegative_money(selling_price)
    require_nonnegative_money(purchase_price)
    require_valid_gst_rate(gst_rate)
    require_nonnegative_quantity(quantity)
    require_nonnegative_quantity(low_stock_threshold)
    if imei:
        require_valid_imei(imei)
    attributes = normalize_variants(variants)

    cache = _ensure_products_cache(context)
    if product_id in cache["by_id"]:
        log.warning("Attempted to add duplicate product '%s'", product_id)
        raise BusinessRuleViolation(f"Product '{product_id}' already exists")
    if barcode and barcode in cache["by_barcode"]:
        log.warning("Attempted to reuse barcode '%s'", barcode)
        raise BusinessRuleViolation("Barcode already exists")
    if imei and imei in cache["by_imei"]:
        log.warning("Attempted to reuse IMEI '%s'", imei)
        raise BusinessRuleViolation("IMEI already exists")

    record = data_manager.ProductRow(
        product_id=product_id,
        name=name,
        brand=brand,
        model=model,
        category=category,
        selling_price=gst.quantize_money(selling_price),
        gst_rate=Decimal(gst_rate),
        quantity=int(quantity),
        low_stock_threshold=int(low_stock_threshold),
        barcode=barcode or None,
        purchase_price=gst.quantize_money(purchase_price),
        imei=imei or None,
        variants=attributes,
    )
    with _unit_of_work(context) as transaction:
        data_manager.append_product(transaction, record)
    log.info("Added product '%s' (%s) with quantity %d", product_id, name, quantity)
    return record


def update_product(context: RuntimeContext, product_id: str, **changes: Any) -> data_manager.ProductRow:
    """Overwrite selected catalog fields of an existing product.

    Accepted keywords are the keys of ``PRODUCT_FIELD_COLUMNS`` plus
    ``variants``, which replaces the whole attribute set. ``quantity`` is
    refused; use :func:`restock` or a sale instead.

    Raises:
        NotFoundError: If the product does not exist.
        ValidationError: On unknown fields or invalid values.
        BusinessRuleViolation: If a new barcode or IMEI clashes with another
            product.
    """
    current = get_product(context, product_id)
    if "quantity" in changes:
        raise ValidationError("Quantity cannot be edited directly; use restock or record a sale")
    unknown = sorted(set(changes) - PRODUCT_UPDATABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown product field(s): {', '.join(unknown)}")

    for key in ("selling_price", "purchase_price"):
        if key in changes:
            require_nonnegative_money(changes[key])
            changes[key] = gst.quantize_money(changes[key])
    if "gst_rate" in changes:
        require_valid_gst_rate(changes["gst_rate"])
    if "low_stock_threshold" in changes:
        require_nonnegative_quantity(changes["low_stock_threshold"])
    if changes.get("imei"):
        require_valid_imei(changes["imei"])

    cache = _ensure_products_cache(context)
    for key, bucket, message in (
        ("barcode", "by_barcode", "Barcode already exists"),
        ("imei", "by_imei", "IMEI already exists"),
    ):
        value = changes.get(key)
        owner = cache[bucket].get(value) if value else None
        if owner is not None and owner.product_id != product_id:
            raise BusinessRuleViolation(message)

    attributes = normalize_variants(changes.pop("variants")) if "variants" in changes else None
    field_values = {PRODUCT_FIELD_COLUMNS[key]: value for key, value in changes.items()}
    with _unit_of_work(context) as transaction:
        if field_values:
            data_manager.update_product(transaction, current.product_id, field_values=field_values)
        if attributes is not None:
            data_manager.replace_product_variants(transaction, current.product_id, attributes)
    changed = sorted(changes) + (["variants"] if attributes is not None else [])
    log.info("Updated product '%s' fields: %s", product_id, ", ".join(changed))
    return get_product(context, product_id)


def restock(context: RuntimeContext, product_id: str, quantity: int) -> data_manager.ProductRow:
    """Increase a product's on-hand quantity.

    Raises:
        NotFoundError: If the product does not exist.
        ValidationError: If ``quantity`` is not a positive integer.
    """
    require_positive_quantity(quantity)
    get_product(context, product_id)
    with _unit_of_work(context) as transaction:
        updated = data_manager.increment_product_quantity(transaction, product_id, int(quantity))
    log.info("Restocked product '%s' by %d (now %d)", product_id, quantity, updated)
    return get_product(context, product_id)


# ---------------------------------------------------------------------------
# Sales
# ---------------------------------------------------------------------------


def validate_sale_command(command: SaleCommand) -> None:
    """Reject malformed sale requests before any catalog work begins.

    Raises:
        ValidationError: Describing the first problem found.
    """
    if not command.lines:
        raise ValidationError("Items array is required and must contain at least one item")
    for line in command.lines:
        if not line.product_id or not str(line.product_id).strip():
            raise ValidationError("Product ID is required for each item")
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity < 1:
            raise ValidationError("Quantity must be a positive integer")
    if not isinstance(command.payment_mode, PaymentMode):
        raise ValidationError("Payment mode must be CASH, UPI, or CARD")
    require_nonnegative_money(command.discount_amount)
    if command.notes is not None and len(command.notes) > MAX_NOTES_LENGTH:
        raise ValidationError(f"Notes must not exceed {MAX_NOTES_LENGTH} characters")

    customer = command.customer
    if customer is None:
        return
    if customer.name is not None and len(customer.name.strip()) < 2:
        raise ValidationError("Customer name must be at least 2 characters")
    if customer.phone and not PHONE_PATTERN.match(customer.phone):
        raise ValidationError("Please provide a valid phone number")
    if customer.gstin and not GSTIN_PATTERN.match(customer.gstin):
        raise ValidationError("Please provide a valid GSTIN format")
    if customer.state is not None and len(customer.state.strip()) < 2:
        raise ValidationError("State must be at least 2 characters")


def allocate_discount(line_totals: Sequence[Decimal], discount: Decimal) -> List[Decimal]:
    """Split a flat discount across lines in proportion to their totals.

    Shares are rounded to paise and the rounding remainder goes to the
    largest line, so the shares always add up to ``discount`` exactly. A zero
    subtotal yields zero shares.
    """
    subtotal = sum(line_totals, Decimal("0"))
    shares = [Decimal("0.00") for _ in line_totals]
    if subtotal <= 0 or discount <= 0:
        return shares

    for index, total in enumerate(line_totals):
        shares[index] = gst.quantize_money(discount * total / subtotal)
    largest = max(range(len(line_totals)), key=lambda index: line_totals[index])
    shares[largest] += discount - sum(shares, Decimal("0"))
    return shares


def compute_sale_totals(
    lines: Sequence[data_manager.SaleLineRow],
    discount_amount: Decimal,
    is_inter_state: bool,
) -> SaleTotals:
    """Price a set of sale lines and apply a flat discount.

    Each line total is ``price × quantity``. The payable amount is
    ``max(0, subtotal - discount)``; the effective discount is allocated
    across lines by :func:`allocate_discount` and every line's GST is taken
    from its own discounted total at its own rate. The sale's GST is the sum
    of the line figures, which matches scaling the undiscounted GST by
    ``total / subtotal`` up to rounding.
    """
    line_totals = [gst.quantize_money(line.price_at_sale * line.quantity) for line in lines]
    subtotal = gst.quantize_money(sum(line_totals, Decimal("0")))
    total_amount = gst.quantize_money(max(Decimal("0"), subtotal - Decimal(discount_amount)))
    effective_discount = subtotal - total_amount

    shares = allocate_discount(line_totals, effective_discount)
    breakdowns = []
    for line, line_total, share in zip(lines, line_totals, shares):
        discounted = line_total - share
        breakdowns.append(
            LineBreakdown(
                line_number=line.line_number,
                line_total=line_total,
                discount_share=share,
                discounted_total=discounted,
                gst=gst.calculate_gst(discounted, line.gst_at_sale, is_inter_state),
            )
        )

    gst_amount = sum((item.gst.total_gst for item in breakdowns), Decimal("0.00"))
    return SaleTotals(
        subtotal=subtotal,
        discount_amount=effective_discount,
        total_amount=total_amount,
        gst_amount=gst_amount,
        lines=tuple(breakdowns),
    )


def _check_availability(
    context: RuntimeContext,
    requests: Sequence[SaleLineRequest],
) -> Dict[str, data_manager.ProductRow]:
    """Validate every requested line against the catalog before mutating.

    Quantities for a product listed on several lines are added together.

    Raises:
        NotFoundError: For the first unknown product.
        InsufficientStockError: For the first product without enough stock.
    """
    products: Dict[str, data_manager.ProductRow] = {}
    requested: Dict[str, int] = {}
    for request in requests:
        product = get_product(context, request.product_id)
        products[product.product_id] = product
        requested[product.product_id] = requested.get(product.product_id, 0) + request.quantity
        if product.quantity < requested[product.product_id]:
            log.warning(
                "Insufficient stock for '%s': available=%d requested=%d",
                product.product_id,
                product.quantity,
                requested[product.product_id],
            )
            raise InsufficientStockError(
                product.product_id,
                product.name,
                product.quantity,
                requested[product.product_id],
            )
    return products


def _snapshot_lines(
    sale_id: str,
    requests: Sequence[SaleLineRequest],
    products: Mapping[str, data_manager.ProductRow],
) -> Tuple[data_manager.SaleLineRow, ...]:
    """Freeze catalog price, rate and descriptors onto the sale lines."""
    lines = []
    for line_number, request in enumerate(requests, start=1):
        product = products[request.product_id]
        lines.append(
            data_manager.SaleLineRow(
                sale_id=sale_id,
                line_number=line_number,
                product_id=product.product_id,
                product_name=product.name,
                brand=product.brand,
                model=product.model,
                category=product.category,
                quantity=request.quantity,
                price_at_sale=product.selling_price,
                gst_at_sale=product.gst_rate,
            )
        )
    return tuple(lines)


def preview_sale(context: RuntimeContext, command: SaleCommand) -> SaleQuote:
    """Validate and price a cart without touching stock or the sales sheet.

    Raises:
        ValidationError: If the request is malformed.
        NotFoundError: If a product is unknown.
        InsufficientStockError: If a line exceeds available stock.
    """
    validate_sale_command(command)
    with context.lock:
        products = _check_availability(context, command.lines)
    lines = _snapshot_lines("", command.lines, products)
    totals = compute_sale_totals(lines, command.discount_amount, command.is_inter_state)
    return SaleQuote(lines=lines, totals=totals)


def next_invoice_number(
    context: RuntimeContext,
    transaction: data_manager.WorkbookTransaction,
    when: datetime,
) -> str:
    """Reserve the next invoice number of the financial year containing ``when``.

    The per-year counter is incremented inside ``transaction``; when the year
    has no counter yet it starts after the number of sales already recorded
    in that year.
    """
    settings = context.settings
    financial_year = gst.financial_year_for(
        when,
        start_month=settings.financial_year_start_month,
        tz=settings.utc_offset,
    )
    sequence = data_manager.next_invoice_sequence(
        transaction,
        financial_year.label,
        seed=lambda: data_manager.count_sales_between(
            context.workbook, financial_year.start, financial_year.end
        ),
    )
    return gst.format_invoice_number(settings.invoice_prefix, financial_year, sequence)


def record_sale(context: RuntimeContext, command: SaleCommand) -> SaleRecord:
    """Validate, price and persist a multi-line sale as one unit of work.

    All lines are checked against the catalog before anything is written.
    Inside the unit of work each product is decremented with a conditional
    write, an invoice number is reserved from the financial-year sequence and
    the sale header and lines are appended. If any step fails every edit is
    rolled back.

    Args:
        context (RuntimeContext): Runtime context providing workbook access,
            caches and the write lock.
        command (SaleCommand): Structured intent describing the sale.

    Returns:
        SaleRecord: The persisted sale, its lines and the priced breakdown.

    Raises:
        ValidationError: If the request is malformed.
        NotFoundError: If a product is unknown.
        InsufficientStockError: If a line exceeds available stock.
        TransactionFailure: If anything else fails after writing started.
    """
    validate_sale_command(command)
    timestamp = _resolve_timestamp(command.timestamp, context.settings.utc_offset)

    with context.lock:
        sale_id = _unique_sale_id(context, timestamp)
        products = _check_availability(context, command.lines)
        lines = _snapshot_lines(sale_id, command.lines, products)
        totals = compute_sale_totals(lines, command.discount_amount, command.is_inter_state)

        try:
            with _unit_of_work(context) as transaction:
                for line in lines:
                    remaining = data_manager.decrement_product_quantity(
                        transaction, line.product_id, line.quantity
                    )
                    if remaining is None:
                        product = products[line.product_id]
                        raise InsufficientStockError(
                            product.product_id, product.name, product.quantity, line.quantity
                        )
                invoice_number = next_invoice_number(context, transaction, timestamp)
                sale = data_manager.SaleRow(
                    sale_id=sale_id,
                    invoice_number=invoice_number,
                    timestamp_iso=timestamp.isoformat(),
                    payment_mode=command.payment_mode.value,
                    subtotal=totals.subtotal,
                    discount_amount=totals.discount_amount,
                    total_amount=totals.total_amount,
                    gst_amount=totals.gst_amount,
                    is_inter_state=command.is_inter_state,
                    customer=command.customer or data_manager.CustomerInfo(),
                    notes=command.notes,
                )
                data_manager.append_sale(transaction, sale)
                for line in lines:
                    data_manager.append_sale_line(transaction, line)
        except BusinessRuleViolation:
            raise
        except Exception as exc:
            log.exception("Sale '%s' aborted and rolled back", sale_id)
            raise TransactionFailure(f"Sale '{sale_id}' could not be completed") from exc

    log.info(
        "Recorded sale '%s' invoice '%s' (%d lines, total=%s, gst=%s)",
        sale.sale_id,
        sale.invoice_number,
        len(lines),
        sale.total_amount,
        sale.gst_amount,
    )
    return SaleRecord(sale=sale, lines=lines, totals=totals)


def get_sale(context: RuntimeContext, sale_id: str) -> SaleRecord:
    """Load a persisted sale and rebuild its breakdown from the stored lines.

    Raises:
        NotFoundError: If ``sale_id`` is unknown.
    """
    cache = _ensure_sales_cache(context)
    try:
        sale = cache["by_id"][sale_id]
    except KeyError as exc:
        log.warning("Sale lookup failed for id '%s'", sale_id)
        raise NotFoundError("Sale not found") from exc

    lines = tuple(cache["lines"].get(sale_id, ()))
    totals = compute_sale_totals(lines, sale.discount_amount, sale.is_inter_state)
    return SaleRecord(sale=sale, lines=lines, totals=totals)


def list_sales(context: RuntimeContext, sale_filter: Optional[SaleFilter] = None) -> SalePage:
    """Filter, order (newest first) and paginate recorded sales.

    Date bounds are inclusive calendar days in the shop's local offset and
    amount bounds apply to the sale total. ``page_size`` above
    ``MAX_PAGE_SIZE`` is capped.

    Raises:
        ValidationError: If the page or page size is below one.
    """
    sale_filter = sale_filter or SaleFilter()
    if sale_filter.page < 1:
        raise ValidationError("Page must be a positive integer")
    if sale_filter.page_size < 1:
        raise ValidationError("Page size must be a positive integer")
    page_size = min(sale_filter.page_size, MAX_PAGE_SIZE)
    tz = context.settings.utc_offset

    matches = []
    for sale in _ensure_sales_cache(context)["all"]:
        moment = datetime.fromisoformat(sale.timestamp_iso)
        local_day = moment.astimezone(tz).date()
        if sale_filter.start_date and local_day < sale_filter.start_date:
            continue
        if sale_filter.end_date and local_day > sale_filter.end_date:
            continue
        if sale_filter.payment_mode and sale.payment_mode != sale_filter.payment_mode.value:
            continue
        if sale_filter.min_amount is not None and sale.total_amount < sale_filter.min_amount:
            continue
        if sale_filter.max_amount is not None and sale.total_amount > sale_filter.max_amount:
            continue
        matches.append((moment, sale))

    matches.sort(key=lambda item: item[0], reverse=True)
    total_count = len(matches)
    offset = (sale_filter.page - 1) * page_size
    page_rows = tuple(sale for _, sale in matches[offset:offset + page_size])
    return SalePage(
        sales=page_rows,
        current_page=sale_filter.page,
        page_size=page_size,
        total_pages=math.ceil(total_count / page_size),
        total_count=total_count,
        has_next=offset + page_size < total_count,
        has_prev=sale_filter.page > 1,
    )


def generate_sale_id(*, prefix: str = "S", when: Optional[datetime] = None) -> str:
    """Generate a sortable sale identifier using UTC timestamps.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.
    """
    when = (when or _resolve_timestamp(None)).astimezone(UTC)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def _unique_sale_id(context: RuntimeContext, when: datetime) -> str:
    """Derive a sale id from ``when``, suffixed when the id is already taken."""
    existing = _ensure_sales_cache(context)["by_id"]
    base = generate_sale_id(when=when)
    candidate = base
    suffix = 1
    while candidate in existing:
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate


def require_positive_quantity(quantity: int) -> None:
    """Validate that a quantity is a strictly positive integer.

    Raises:
        ValidationError: If ``quantity`` is not an integer above zero.
    """
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        log.error("Quantity validation failed: %s", quantity)
        raise ValidationError("Quantity must be a positive integer")


def require_nonnegative_quantity(quantity: int) -> None:
    """Validate that a stock figure is an integer of zero or more."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 0:
        log.error("Stock figure validation failed: %s", quantity)
        raise ValidationError("Quantity must be zero or a positive integer")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is a finite, nonnegative amount.

    NaN and infinities are rejected before any comparison, and so is any
    amount too large to be rounded to paise.

    Raises:
        ValidationError: If ``amount`` is not finite, is out of range or is
            less than zero.
    """
    value = Decimal(amount)
    if not value.is_finite():
        log.error("Monetary value validation failed: %s", amount)
        raise ValidationError("Amount must be a finite number")
    try:
        gst.quantize_money(value)
    except InvalidOperation as exc:
        log.error("Monetary value out of range: %s", amount)
        raise ValidationError("Amount is out of range") from exc
    if value < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValidationError("Amount must be zero or positive")


def require_valid_gst_rate(rate: Decimal) -> None:
    """Validate that a GST rate is a percentage between 0 and 100."""
    value = Decimal(rate)
    if not value.is_finite() or not Decimal("0") <= value <= Decimal("100"):
        log.error("GST rate validation failed: %s", rate)
        raise ValidationError("GST rate must be between 0 and 100")


def require_valid_imei(imei: str) -> None:
    """Validate that an IMEI is exactly fifteen digits."""
    if len(imei) != IMEI_LENGTH:
        raise ValidationError(f"IMEI must be exactly {IMEI_LENGTH} digits")
    if not imei.isdigit():
        raise ValidationError("IMEI must contain only digits")


def normalize_variants(variants: Optional[VariantSpec]) -> Tuple[data_manager.VariantAttribute, ...]:
    """Convert caller-supplied variant attributes into typed records.

    Attribute names are stripped and must be non-empty and unique per
    product. Values are stored as text.

    Raises:
        ValidationError: If ``variants`` is not a mapping or a sequence of
            :class:`~retail_pos.data_manager.VariantAttribute`, or if a name
            is blank or repeated.
    """
    if variants is None:
        return ()
    if isinstance(variants, Mapping):
        pairs = list(variants.items())
    elif isinstance(variants, (str, bytes)):
        raise ValidationError("Variants must be an object")
    else:
        pairs = []
        for item in variants:
            if not isinstance(item, data_manager.VariantAttribute):
                raise ValidationError("Variants must be an object")
            pairs.append((item.name, item.value))

    attributes: List[data_manager.VariantAttribute] = []
    seen = set()
    for raw_name, raw_value in pairs:
        name = str(raw_name).strip()
        if not name:
            raise ValidationError("Variant attribute name is required")
        if name in seen:
            raise ValidationError(f"Duplicate variant attribute '{name}'")
        seen.add(name)
        value = "" if raw_value is None else str(raw_value).strip()
        attributes.append(data_manager.VariantAttribute(name=name, value=value))
    return tuple(attributes)


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to disk."""
    with context.lock:
        data_manager.save_workbook(
            context.workbook,
            destination=context.settings.data_file,
        )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context containing a newly opened workbook and
            an empty cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)
