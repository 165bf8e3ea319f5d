"""GST invoice composition.

Turns a :class:`~retail_pos.core_logic.SaleRecord` into a structured,
printable invoice. Composition has no side effects: the invoice number comes
from the sale row, so composing the same sale twice gives the same document
apart from ``generated_at``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from . import core_logic, data_manager, gst
from .constants import WALK_IN_CUSTOMER


TERMS_AND_CONDITIONS = (
    "Goods once sold will not be taken back or exchanged",
    "All disputes are subject to {state} jurisdiction only",
    "Warranty as per manufacturer terms and conditions",
)


@dataclass(frozen=True)
class CustomerBlock:
    name: str
    phone: str
    address: str
    gstin: str


@dataclass(frozen=True)
class InvoiceLine:
    description: str
    hsn_code: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal
    discount: Decimal
    gst_rate: Decimal
    taxable_value: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    total_gst: Decimal


@dataclass(frozen=True)
class TaxTotals:
    total_cgst: Decimal
    total_sgst: Decimal
    total_igst: Decimal
    total_gst: Decimal


@dataclass(frozen=True)
class InvoiceSummary:
    subtotal: Decimal
    discount: Decimal
    taxable_amount: Decimal
    total_cgst: Decimal
    total_sgst: Decimal
    total_igst: Decimal
    total_gst: Decimal
    grand_total: Decimal
    round_off: Decimal
    payment_mode: str


@dataclass(frozen=True)
class GstDetails:
    is_inter_state: bool
    place_of_supply: str
    reverse_charge: str = "No"
    transportation_mode: str = "By Hand"


@dataclass(frozen=True)
class Invoice:
    """Complete invoice document for one sale."""

    invoice_number: str
    invoice_date: str
    invoice_time: str
    sale_id: str
    company: data_manager.CompanyInfo
    customer: CustomerBlock
    items: Tuple[InvoiceLine, ...]
    tax_totals: TaxTotals
    summary: InvoiceSummary
    notes: str
    terms_and_conditions: Tuple[str, ...]
    gst_details: GstDetails
    generated_by: str
    generated_at: str


def describe_line(line: data_manager.SaleLineRow) -> str:
    """Build ``"<brand> <name> - <model>"``, skipping blank parts."""
    description = " ".join(part for part in (line.brand, line.product_name) if part)
    if line.model:
        description = f"{description} - {line.model}"
    return description


def build_customer_block(customer: data_manager.CustomerInfo) -> CustomerBlock:
    return CustomerBlock(
        name=customer.name or WALK_IN_CUSTOMER,
        phone=customer.phone or "",
        address=customer.address or "",
        gstin=customer.gstin or "",
    )


def build_invoice_lines(record: core_logic.SaleRecord) -> Tuple[InvoiceLine, ...]:
    items = []
    for line, breakdown in zip(record.lines, record.totals.lines):
        tax = breakdown.gst
        items.append(
            InvoiceLine(
                description=describe_line(line),
                hsn_code=gst.hsn_code_for(line.category),
                quantity=line.quantity,
                unit_price=line.price_at_sale,
                total_price=breakdown.line_total,
                discount=breakdown.discount_share,
                gst_rate=line.gst_at_sale,
                taxable_value=tax.base_amount,
                cgst=tax.cgst,
                sgst=tax.sgst,
                igst=tax.igst,
                total_gst=tax.total_gst,
            )
        )
    return tuple(items)


def consolidate_taxes(items: Tuple[InvoiceLine, ...]) -> TaxTotals:
    zero = Decimal("0.00")
    total_cgst = sum((item.cgst for item in items), zero)
    total_sgst = sum((item.sgst for item in items), zero)
    total_igst = sum((item.igst for item in items), zero)
    return TaxTotals(
        total_cgst=total_cgst,
        total_sgst=total_sgst,
        total_igst=total_igst,
        total_gst=sum((item.total_gst for item in items), zero),
    )


def compose_invoice(
    record: core_logic.SaleRecord,
    settings: data_manager.ConfigSettings,
    *,
    generated_at: Optional[datetime] = None,
) -> Invoice:
    """Assemble the GST invoice for a recorded sale.

    The header date and time are the sale's timestamp in the shop's offset.
    Line taxes are taken from each line's discounted total, so the
    consolidated figures add up to the GST stored on the sale.

    Args:
        record (core_logic.SaleRecord): Sale with lines and breakdown.
        settings (data_manager.ConfigSettings): Source of the company block
            and the shop's UTC offset.
        generated_at (datetime | None): Generation moment, defaults to now.

    Returns:
        Invoice: Immutable invoice document.
    """
    sale = record.sale
    company = settings.company
    local_moment = datetime.fromisoformat(sale.timestamp_iso).astimezone(settings.utc_offset)
    generated_at = generated_at or datetime.now(UTC)

    items = build_invoice_lines(record)
    taxes = consolidate_taxes(items)
    taxable_amount = sum((item.taxable_value for item in items), Decimal("0.00"))

    summary = InvoiceSummary(
        subtotal=record.totals.subtotal,
        discount=record.totals.discount_amount,
        taxable_amount=taxable_amount,
        total_cgst=taxes.total_cgst,
        total_sgst=taxes.total_sgst,
        total_igst=taxes.total_igst,
        total_gst=taxes.total_gst,
        grand_total=sale.total_amount,
        round_off=Decimal("0.00"),
        payment_mode=sale.payment_mode,
    )

    if sale.is_inter_state:
        place_of_supply = sale.customer.state or "Unknown"
    else:
        place_of_supply = company.state

    return Invoice(
        invoice_number=sale.invoice_number,
        invoice_date=local_moment.date().isoformat(),
        invoice_time=local_moment.strftime("%H:%M:%S"),
        sale_id=sale.sale_id,
        company=company,
        customer=build_customer_block(sale.customer),
        items=items,
        tax_totals=taxes,
        summary=summary,
        notes=sale.notes or "",
        terms_and_conditions=tuple(term.format(state=company.state) for term in TERMS_AND_CONDITIONS),
        gst_details=GstDetails(is_inter_state=sale.is_inter_state, place_of_supply=place_of_supply),
        generated_by=f"{company.name} POS System",
        generated_at=generated_at.isoformat(),
    )


def invoice_to_dict(invoice: Invoice) -> Dict[str, Any]:
    """Return the invoice as nested plain dictionaries and lists."""
    return asdict(invoice)
