"""Indian GST arithmetic and financial-year invoice numbering.

Everything here is pure: no workbook access and no clock reads. The business
layer supplies amounts, rates and timestamps and persists the results.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from .constants import HSN_CODE_ACCESSORIES, HSN_CODE_MOBILE, MOBILE_PHONE_CATEGORY


CENT = Decimal("0.01")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class GstBreakdown:
    """Tax split of a tax-inclusive amount, every field rounded to paise."""

    base_amount: Decimal
    cgst: Decimal
    sgst: Decimal
    igst: Decimal
    total_gst: Decimal


@dataclass(frozen=True)
class FinancialYear:
    """Half-open accounting window ``[start, end)`` and its printable label."""

    label: str
    start: datetime
    end: datetime


def quantize_money(amount: Decimal) -> Decimal:
    """Round ``amount`` to two decimals using round-half-up."""

    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def calculate_gst(amount: Decimal, gst_rate: Decimal, is_inter_state: bool = False) -> GstBreakdown:
    """Split a GST-inclusive ``amount`` into base value and tax components.

    ``base = amount / (1 + rate/100)`` and the tax is the remainder. For
    inter-state supply the whole tax is IGST; otherwise it is halved into CGST
    and SGST. Intermediate values keep full precision and only the returned
    fields are rounded.

    Args:
        amount (Decimal): Tax-inclusive amount.
        gst_rate (Decimal): GST percentage, e.g. ``Decimal("18")``.
        is_inter_state (bool): Whether buyer and seller are in different
            states.

    Returns:
        GstBreakdown: Rounded base amount and tax split.
    """

    amount = Decimal(amount)
    rate = Decimal(gst_rate)
    base = amount / (1 + rate / HUNDRED)
    total_gst = amount - base

    if is_inter_state:
        return GstBreakdown(
            base_amount=quantize_money(base),
            cgst=quantize_money(Decimal("0")),
            sgst=quantize_money(Decimal("0")),
            igst=quantize_money(total_gst),
            total_gst=quantize_money(total_gst),
        )

    half = total_gst / 2
    return GstBreakdown(
        base_amount=quantize_money(base),
        cgst=quantize_money(half),
        sgst=quantize_money(half),
        igst=quantize_money(Decimal("0")),
        total_gst=quantize_money(total_gst),
    )


def hsn_code_for(category: str) -> str:
    """Return the HSN code used on invoices for a product category."""

    return HSN_CODE_MOBILE if category == MOBILE_PHONE_CATEGORY else HSN_CODE_ACCESSORIES


def financial_year_for(when: datetime, *, start_month: int = 4, tz: timezone = timezone.utc) -> FinancialYear:
    """Resolve the financial year containing ``when``.

    ``when`` is converted to ``tz`` (the shop's local offset) before the month
    is inspected, so a sale at 00:30 IST on 1 April belongs to the new year
    even though it is still 31 March in UTC.

    Args:
        when (datetime): Timezone-aware moment to classify.
        start_month (int): First month of the financial year (April = 4).
        tz (timezone): Offset in which the year boundary is evaluated.

    Returns:
        FinancialYear: Label such as ``"2024-25"`` and the window bounds.
    """

    local = when.astimezone(tz)
    start_year = local.year if local.month >= start_month else local.year - 1
    start = datetime(start_year, start_month, 1, tzinfo=tz)
    end = datetime(start_year + 1, start_month, 1, tzinfo=tz)
    label = f"{start_year}-{str(start_year + 1)[-2:]}"
    return FinancialYear(label=label, start=start, end=end)


def format_invoice_number(prefix: str, financial_year: FinancialYear, sequence: int) -> str:
    """Format ``PREFIX/FY/NNNN``, e.g. ``KM/2024-25/0001``."""

    return f"{prefix}/{financial_year.label}/{sequence:04d}"


__all__ = [
    "GstBreakdown",
    "FinancialYear",
    "quantize_money",
    "calculate_gst",
    "hsn_code_for",
    "financial_year_for",
    "format_invoice_number",
]
