"""Tests for GST arithmetic and financial-year numbering helpers."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from retail_pos import constants, gst

IST = timezone(timedelta(hours=5, minutes=30))


def test_calculate_gst_intra_state_splits_evenly():
    breakdown = gst.calculate_gst(Decimal("2000"), Decimal("18"))

    assert breakdown.base_amount == Decimal("1694.92")
    assert breakdown.total_gst == Decimal("305.08")
    assert breakdown.cgst == breakdown.sgst == Decimal("152.54")
    assert breakdown.igst == Decimal("0.00")


def test_calculate_gst_inter_state_is_all_igst():
    breakdown = gst.calculate_gst(Decimal("2000"), Decimal("18"), is_inter_state=True)

    assert breakdown.igst == breakdown.total_gst == Decimal("305.08")
    assert breakdown.cgst == breakdown.sgst == Decimal("0.00")


def test_calculate_gst_zero_rate_has_no_tax():
    breakdown = gst.calculate_gst(Decimal("499.99"), Decimal("0"))

    assert breakdown.base_amount == Decimal("499.99")
    assert breakdown.total_gst == Decimal("0.00")


@pytest.mark.parametrize(
    "amount, rate",
    [
        (Decimal("0.01"), Decimal("18")),
        (Decimal("99.99"), Decimal("5")),
        (Decimal("1234.56"), Decimal("12")),
        (Decimal("15999"), Decimal("28")),
        (Decimal("333.33"), Decimal("18")),
    ],
)
def test_calculate_gst_components_add_back_to_amount(amount, rate):
    breakdown = gst.calculate_gst(amount, rate)

    assert abs(breakdown.base_amount + breakdown.total_gst - amount) <= Decimal("0.01")
    assert breakdown.cgst == breakdown.sgst


def test_quantize_money_rounds_half_up():
    assert gst.quantize_money(Decimal("2.345")) == Decimal("2.35")
    assert gst.quantize_money(Decimal("2.344")) == Decimal("2.34")


def test_hsn_code_for_distinguishes_phones_from_accessories():
    assert gst.hsn_code_for(constants.MOBILE_PHONE_CATEGORY) == "85171200"
    assert gst.hsn_code_for("Accessories") == "85444900"
    assert gst.hsn_code_for("") == "85444900"


def test_financial_year_for_mid_year():
    year = gst.financial_year_for(datetime(2024, 7, 15, 12, tzinfo=UTC), tz=IST)

    assert year.label == "2024-25"
    assert year.start == datetime(2024, 4, 1, tzinfo=IST)
    assert year.end == datetime(2025, 4, 1, tzinfo=IST)


def test_financial_year_for_january_belongs_to_previous_start_year():
    year = gst.financial_year_for(datetime(2025, 1, 10, tzinfo=IST), tz=IST)
    assert year.label == "2024-25"


def test_financial_year_boundary_is_evaluated_in_local_offset():
    # 19:00 UTC on 31 March is already 00:30 on 1 April in India.
    moment = datetime(2024, 3, 31, 19, 0, tzinfo=UTC)

    assert gst.financial_year_for(moment, tz=IST).label == "2024-25"
    assert gst.financial_year_for(moment, tz=UTC).label == "2023-24"


def test_financial_year_supports_custom_start_month():
    year = gst.financial_year_for(datetime(2024, 12, 31, tzinfo=UTC), start_month=1)
    assert year.label == "2024-25"
    assert year.start == datetime(2024, 1, 1, tzinfo=UTC)


def test_format_invoice_number_pads_sequence():
    year = gst.financial_year_for(datetime(2024, 7, 1, tzinfo=IST), tz=IST)

    assert gst.format_invoice_number("KM", year, 1) == "KM/2024-25/0001"
    assert gst.format_invoice_number("KM", year, 12345) == "KM/2024-25/12345"
