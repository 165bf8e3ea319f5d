"""Command-line entry points for the retail POS.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into the command objects consumed by the business
layer, and printing results as JSON. Keeping the CLI thin ensures the same
parser configuration can be reused by tests, scripts, or any alternative
front-end that wants to expose the package capabilities.
"""

from __future__ import annotations

import argparse
import json
from dataclasses import asdict, dataclass, is_dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import core_logic, data_manager, invoice, log
from .constants import PRODUCT_SEARCH_LIMIT, DEFAULT_PAGE_SIZE, PaymentMode


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutating: bool = True


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pos-cli",
        description="Command-line tools for the retail POS workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and restocks."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "restock": register_restock_command(subparsers),
        "sale": register_sale_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as lookups and reports."""
    specs = {
        "preview-sale": register_preview_sale_command(subparsers),
        "show-product": register_show_product_command(subparsers),
        "list-products": register_list_products_command(subparsers),
        "show-sale": register_show_sale_command(subparsers),
        "list-sales": register_list_sales_command(subparsers),
        "search-products": register_search_products_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_cart_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--item",
        dest="items",
        action="append",
        required=True,
        metavar="PRODUCT_ID:QTY",
        help="Cart line; repeat for several products.",
    )
    parser.add_argument(
        "--payment-mode",
        choices=[member.value for member in PaymentMode],
        required=True,
    )
    parser.add_argument("--discount", default="0")
    parser.add_argument("--inter-state", action="store_true", help="Bill IGST instead of CGST/SGST.")
    parser.add_argument("--customer-name", default=None)
    parser.add_argument("--customer-phone", default=None)
    parser.add_argument("--customer-address", default=None)
    parser.add_argument("--customer-gstin", default=None)
    parser.add_argument("--customer-state", default=None)
    parser.add_argument("--notes", dest="notes", default=None)


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Register a new product in the Products sheet."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--brand", default="")
        parser.add_argument("--model", default="")
        parser.add_argument("--category", default="")
        parser.add_argument("--selling-price", required=True)
        parser.add_argument("--purchase-price", default="0")
        parser.add_argument("--gst-rate", default="18")
        parser.add_argument("--quantity", type=int, default=0)
        parser.add_argument("--low-stock-threshold", type=int, default=5)
        parser.add_argument("--barcode", default=None)
        parser.add_argument("--imei", default=None)
        parser.add_argument(
            "--variant",
            dest="variants",
            action="append",
            default=None,
            metavar="NAME=VALUE",
            help="Variant attribute such as color=Black; repeat for several.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""
    name = "update-product"
    help_text = "Change selected fields of an existing product."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--name", default=None)
        parser.add_argument("--brand", default=None)
        parser.add_argument("--model", default=None)
        parser.add_argument("--category", default=None)
        parser.add_argument("--selling-price", default=None)
        parser.add_argument("--gst-rate", default=None)
        parser.add_argument("--purchase-price", default=None)
        parser.add_argument("--low-stock-threshold", type=int, default=None)
        parser.add_argument("--barcode", default=None)
        parser.add_argument("--imei", default=None)
        parser.add_argument(
            "--variant",
            dest="variants",
            action="append",
            default=None,
            metavar="NAME=VALUE",
            help="Replaces all variant attributes; repeat for several.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_update_product)


def register_restock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``restock``."""
    name = "restock"
    help_text = "Add received units to a product's stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--quantity", type=int, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_restock)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale, deduct stock and print the GST invoice."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_cart_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_preview_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``preview-sale``."""
    name = "preview-sale"
    help_text = "Price a cart and check stock without recording anything."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_cart_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_preview_sale, mutating=False)


def register_show_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``show-product``."""
    name = "show-product"
    help_text = "Display one product with its variant attributes."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("product_id", metavar="PRODUCT_ID")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_show_product, mutating=False)


def register_list_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``list-products``."""
    name = "list-products"
    help_text = "List catalog products, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--category", default=None)
        parser.add_argument("--brand", default=None)
        parser.add_argument("--low-stock", action="store_true")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list_products, mutating=False)


def register_show_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``show-sale``."""
    name = "show-sale"
    help_text = "Display a recorded sale with its invoice."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("sale_id", metavar="SALE_ID")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_show_sale, mutating=False)


def register_list_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``list-sales``."""
    name = "list-sales"
    help_text = "List recorded sales with filters and pagination."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--start-date", type=date.fromisoformat, default=None)
        parser.add_argument("--end-date", type=date.fromisoformat, default=None)
        parser.add_argument(
            "--payment-mode",
            choices=[member.value for member in PaymentMode],
            default=None,
        )
        parser.add_argument("--min-amount", default=None)
        parser.add_argument("--max-amount", default=None)
        parser.add_argument("--page", type=int, default=1)
        parser.add_argument("--page-size", type=int, default=DEFAULT_PAGE_SIZE)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_list_sales, mutating=False)


def register_search_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``search-products``."""
    name = "search-products"
    help_text = "Look up products by text, barcode or category."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--query", default=None)
        parser.add_argument("--barcode", default=None)
        parser.add_argument("--category", default=None)
        parser.add_argument("--in-stock", action="store_true")
        parser.add_argument("--limit", type=int, default=PRODUCT_SEARCH_LIMIT)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_search_products, mutating=False)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    name = "low-stock"
    help_text = "Display products at or below their low-stock threshold."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_low_stock_report, mutating=False)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_decimal(raw: str, field_name: str) -> Decimal:
    """Parse a money or rate argument, raising ValidationError on bad input.

    ``NaN`` and ``Infinity`` parse as decimals but are refused here.
    """
    try:
        value = Decimal(raw)
    except InvalidOperation as exc:
        raise core_logic.ValidationError(f"{field_name} must be a number, got '{raw}'") from exc
    if not value.is_finite():
        raise core_logic.ValidationError(f"{field_name} must be a finite number, got '{raw}'")
    return value


def parse_item(raw: str) -> core_logic.SaleLineRequest:
    """Parse ``PRODUCT_ID:QTY`` into a sale line request."""
    product_id, separator, quantity = raw.rpartition(":")
    if not separator or not product_id:
        raise core_logic.ValidationError(f"Item must look like PRODUCT_ID:QTY, got '{raw}'")
    try:
        return core_logic.SaleLineRequest(product_id=product_id, quantity=int(quantity))
    except ValueError as exc:
        raise core_logic.ValidationError(f"Quantity must be a positive integer, got '{quantity}'") from exc


def parse_variant(raw: str) -> Tuple[str, str]:
    """Parse ``NAME=VALUE`` into a variant attribute pair."""
    name, separator, value = raw.partition("=")
    if not separator or not name.strip():
        raise core_logic.ValidationError(f"Variant must look like NAME=VALUE, got '{raw}'")
    return name.strip(), value.strip()


def translate_variants(raw_values: Optional[Sequence[str]]) -> Optional[list[data_manager.VariantAttribute]]:
    """Turn repeated ``--variant`` options into typed attributes, or ``None``."""
    if raw_values is None:
        return None
    return [data_manager.VariantAttribute(*parse_variant(raw)) for raw in raw_values]


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "product_id": args.product_id,
        "name": args.name,
        "brand": args.brand,
        "model": args.model,
        "category": args.category,
        "purchase_price": parse_decimal(args.purchase_price, "Purchase price"),
        "selling_price": parse_decimal(args.selling_price, "Selling price"),
        "gst_rate": parse_decimal(args.gst_rate, "GST rate"),
        "quantity": args.quantity,
        "low_stock_threshold": args.low_stock_threshold,
        "barcode": args.barcode,
        "imei": args.imei,
        "variants": translate_variants(args.variants),
    }


def translate_update_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into the fields an update-product request changes."""
    changes: Dict[str, Any] = {}
    for key in ("name", "brand", "model", "category", "low_stock_threshold", "barcode", "imei"):
        value = getattr(args, key, None)
        if value is not None:
            changes[key] = value
    if args.selling_price is not None:
        changes["selling_price"] = parse_decimal(args.selling_price, "Selling price")
    if args.purchase_price is not None:
        changes["purchase_price"] = parse_decimal(args.purchase_price, "Purchase price")
    if args.gst_rate is not None:
        changes["gst_rate"] = parse_decimal(args.gst_rate, "GST rate")
    if args.variants is not None:
        changes["variants"] = translate_variants(args.variants)
    return changes


def translate_customer(args: argparse.Namespace) -> Optional[data_manager.CustomerInfo]:
    """Build customer details from the ``--customer-*`` options, if any."""
    customer = data_manager.CustomerInfo(
        name=args.customer_name,
        phone=args.customer_phone,
        address=args.customer_address,
        gstin=args.customer_gstin,
        state=args.customer_state,
    )
    if customer == data_manager.CustomerInfo():
        return None
    return customer


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        lines=tuple(parse_item(raw) for raw in args.items),
        payment_mode=PaymentMode(args.payment_mode),
        discount_amount=parse_decimal(args.discount, "Discount"),
        is_inter_state=args.inter_state,
        customer=translate_customer(args),
        notes=args.notes,
    )


def translate_sale_filter(args: argparse.Namespace) -> core_logic.SaleFilter:
    """Translate CLI args into a sales listing filter."""
    return core_logic.SaleFilter(
        start_date=args.start_date,
        end_date=args.end_date,
        payment_mode=PaymentMode(args.payment_mode) if args.payment_mode else None,
        min_amount=parse_decimal(args.min_amount, "Minimum amount") if args.min_amount is not None else None,
        max_amount=parse_decimal(args.max_amount, "Maximum amount") if args.max_amount is not None else None,
        page=args.page,
        page_size=args.page_size,
    )


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def emit(payload: Any) -> None:
    """Print ``payload`` as indented JSON on stdout."""
    if is_dataclass(payload) and not isinstance(payload, type):
        payload = asdict(payload)
    print(json.dumps(payload, indent=2, default=_json_default))


def product_payload(product: data_manager.ProductRow) -> Dict[str, Any]:
    return {**asdict(product), "is_low_stock": product.is_low_stock}


def sale_payload(context: core_logic.RuntimeContext, record: core_logic.SaleRecord) -> Dict[str, Any]:
    document = invoice.compose_invoice(record, context.settings)
    return {
        "sale": asdict(record.sale),
        "lines": [asdict(line) for line in record.lines],
        "invoice": invoice.invoice_to_dict(document),
    }


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    payload = translate_add_product(args)
    product = core_logic.add_product(context, **payload)
    emit(product_payload(product))
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-product workflow in the BLL."""
    changes = translate_update_product(args)
    product = core_logic.update_product(context, args.product_id, **changes)
    emit(product_payload(product))
    return 0


def run_restock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the restock workflow via the BLL."""
    product = core_logic.restock(context, args.product_id, args.quantity)
    emit(product_payload(product))
    return 0


def run_show_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the product lookup workflow."""
    product = core_logic.get_product(context, args.product_id)
    emit(product_payload(product))
    return 0


def run_list_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the catalog listing workflow."""
    products = core_logic.list_products(
        context,
        category=args.category,
        brand=args.brand,
        low_stock=args.low_stock,
    )
    emit([product_payload(product) for product in products])
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL and print the invoice."""
    command = translate_sale(args)
    record = core_logic.record_sale(context, command)
    emit(sale_payload(context, record))
    return 0


def run_preview_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the cart preview workflow."""
    command = translate_sale(args)
    quote = core_logic.preview_sale(context, command)
    emit(quote)
    return 0


def run_show_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale lookup workflow and print the regenerated invoice."""
    record = core_logic.get_sale(context, args.sale_id)
    emit(sale_payload(context, record))
    return 0


def run_list_sales(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sales listing workflow."""
    page = core_logic.list_sales(context, translate_sale_filter(args))
    emit(page)
    return 0


def run_search_products(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the product search workflow."""
    products = core_logic.search_products(
        context,
        query=args.query,
        barcode=args.barcode,
        category=args.category,
        in_stock=args.in_stock,
        limit=args.limit,
    )
    emit([product_payload(product) for product in products])
    return 0


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the low-stock reporting workflow."""
    products = core_logic.list_low_stock_products(context)
    emit([product_payload(product) for product in products])
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, RuntimeError):
        # TransactionFailure, schema mismatch and read-only workbook
        log.error("%s", error)
        return 1
    log.error("Internal error (%s); no changes were saved", type(error).__name__)
    # INFO stays below the console threshold, so the traceback lands in the file only.
    log.info("Internal error details", exc_info=error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        spec = command_table[args.command]
        if spec.mutating:
            core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and spec.mutating:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
