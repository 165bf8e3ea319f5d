"""Enumerations and fixed values shared across the retail POS modules.

Centralises domain constants so that the data access layer (DAL), business
logic layer (BLL), invoice composer and CLI rely on a single source of truth
for sheet names, payment modes and GST reference data.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.1.0"

# Indian GST reference data.
HSN_CODE_MOBILE = "85171200"
HSN_CODE_ACCESSORIES = "85444900"
MOBILE_PHONE_CATEGORY = "Mobile Phone"
DEFAULT_GST_RATE = Decimal("18")
DEFAULT_LOW_STOCK_THRESHOLD = 5

DEFAULT_INVOICE_PREFIX = "KM"
DEFAULT_FINANCIAL_YEAR_START_MONTH = 4

WALK_IN_CUSTOMER = "Walk-in Customer"
MAX_NOTES_LENGTH = 500
MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
PRODUCT_SEARCH_LIMIT = 20
IMEI_LENGTH = 15


class PaymentMode(str, Enum):
    """Enumerate supported payment mechanisms for sales."""

    CASH = "CASH"
    UPI = "UPI"
    CARD = "CARD"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    SALES = "Sales"
    PRODUCT_VARIANTS = "ProductVariants"
    SALE_LINES = "SaleLines"
    INVOICE_SEQUENCE = "InvoiceSequence"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "HSN_CODE_MOBILE",
    "HSN_CODE_ACCESSORIES",
    "MOBILE_PHONE_CATEGORY",
    "DEFAULT_GST_RATE",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "DEFAULT_INVOICE_PREFIX",
    "DEFAULT_FINANCIAL_YEAR_START_MONTH",
    "WALK_IN_CUSTOMER",
    "MAX_NOTES_LENGTH",
    "MAX_PAGE_SIZE",
    "DEFAULT_PAGE_SIZE",
    "PRODUCT_SEARCH_LIMIT",
    "IMEI_LENGTH",
    "PaymentMode",
    "SheetName",
]
