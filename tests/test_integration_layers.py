"""Integration tests describing the end-to-end retail POS workflows.

These scenarios run the CLI against a real workbook on disk so the data
access, business logic, invoice and presentation layers are exercised
together, including persistence between invocations.
"""

from __future__ import annotations

import json
from decimal import Decimal

import pytest

from retail_pos import cli, core_logic, data_manager, setup_excel


def _run(capsys, config_path, *argv) -> tuple[int, object]:
    exit_code = cli.main(["--config", str(config_path), *argv])
    out = capsys.readouterr().out
    return exit_code, (json.loads(out) if out.strip() else None)


@pytest.fixture
def shop(config_factory, capsys):
    """Config bundle whose workbook already holds a phone and a charger."""

    bundle = config_factory()
    _run(
        capsys,
        bundle.config_path,
        "add-product",
        "--product-id", "P1",
        "--name", "Galaxy A15",
        "--brand", "Samsung",
        "--model", "SM-A155F",
        "--category", "Mobile Phone",
        "--selling-price", "1000",
        "--quantity", "5",
        "--barcode", "890100000001",
    )
    _run(
        capsys,
        bundle.config_path,
        "add-product",
        "--product-id", "P2",
        "--name", "Fast Charger",
        "--brand", "Anker",
        "--category", "Accessories",
        "--selling-price", "5000",
        "--gst-rate", "12",
        "--quantity", "3",
    )
    return bundle


def test_sale_lifecycle_flow(shop, capsys):
    """Sell, reload from disk, and look the sale up again."""

    exit_code, sale = _run(
        capsys,
        shop.config_path,
        "sale",
        "--item", "P1:2",
        "--payment-mode", "CASH",
        "--customer-name", "Ravi Kumar",
    )
    assert exit_code == 0
    assert sale["sale"]["total_amount"] == "2000.00"
    assert sale["invoice"]["customer"]["name"] == "Ravi Kumar"
    assert sale["invoice"]["summary"]["total_cgst"] == "152.54"

    context = core_logic.load_runtime_context(shop.config_path)
    assert core_logic.get_product(context, "P1").quantity == 3

    exit_code, shown = _run(capsys, shop.config_path, "show-sale", sale["sale"]["sale_id"])
    assert exit_code == 0
    assert shown["invoice"]["invoice_number"] == sale["invoice"]["invoice_number"]
    assert shown["invoice"]["items"] == sale["invoice"]["items"]

    exit_code, page = _run(capsys, shop.config_path, "list-sales", "--payment-mode", "CASH")
    assert page["total_count"] == 1


def test_failed_sale_leaves_workbook_untouched(shop, capsys):
    before = shop.workbook_path.read_bytes()

    exit_code, output = _run(
        capsys,
        shop.config_path,
        "sale",
        "--item", "P1:2",
        "--item", "P2:4",
        "--payment-mode", "UPI",
    )

    assert exit_code == 2
    assert output is None
    assert shop.workbook_path.read_bytes() == before
    context = core_logic.load_runtime_context(shop.config_path)
    assert core_logic.get_product(context, "P1").quantity == 5
    assert list(data_manager.iter_sales(context.workbook)) == []


def test_preview_does_not_persist(shop, capsys):
    before = shop.workbook_path.read_bytes()

    exit_code, quote = _run(
        capsys,
        shop.config_path,
        "preview-sale",
        "--item", "P1:5",
        "--item", "P2:1",
        "--payment-mode", "CARD",
        "--discount", "1000",
    )

    assert exit_code == 0
    assert quote["totals"]["total_amount"] == "9000.00"
    assert quote["totals"]["gst_amount"] == "1168.58"
    assert shop.workbook_path.read_bytes() == before


def test_invoice_numbers_continue_across_invocations(shop, capsys):
    numbers = []
    for _ in range(3):
        exit_code, sale = _run(capsys, shop.config_path, "sale", "--item", "P2:1", "--payment-mode", "UPI")
        assert exit_code == 0
        numbers.append(sale["sale"]["invoice_number"])

    sequences = [number.rsplit("/", 1)[1] for number in numbers]
    assert sequences == ["0001", "0002", "0003"]
    assert len({number.rsplit("/", 1)[0] for number in numbers}) == 1

    exit_code, _ = _run(capsys, shop.config_path, "sale", "--item", "P2:1", "--payment-mode", "UPI")
    assert exit_code == 2


def test_catalog_commands(shop, capsys):
    exit_code, found = _run(capsys, shop.config_path, "search-products", "--query", "galaxy")
    assert exit_code == 0
    assert [item["product_id"] for item in found] == ["P1"]

    exit_code, updated = _run(
        capsys, shop.config_path, "update-product", "--product-id", "P1", "--selling-price", "1099.5"
    )
    assert updated["selling_price"] == "1099.50"

    exit_code, restocked = _run(capsys, shop.config_path, "restock", "--product-id", "P1", "--quantity", "10")
    assert restocked["quantity"] == 15

    exit_code, low = _run(capsys, shop.config_path, "low-stock")
    assert [item["product_id"] for item in low] == ["P2"]

    context = core_logic.load_runtime_context(shop.config_path)
    product = core_logic.get_product(context, "P1")
    assert product.selling_price == Decimal("1099.5")
    assert product.quantity == 15


@pytest.mark.parametrize(
    "argv",
    [
        ("sale", "--item", "P1:1", "--payment-mode", "CASH", "--discount", "NaN"),
        ("preview-sale", "--item", "P1:1", "--payment-mode", "CASH", "--discount", "Infinity"),
        ("add-product", "--product-id", "P9", "--name", "Case", "--selling-price", "Infinity"),
        ("add-product", "--product-id", "P9", "--name", "Case", "--selling-price", "1e999"),
        ("update-product", "--product-id", "P1", "--gst-rate", "NaN"),
    ],
)
def test_non_finite_amounts_are_validation_errors(shop, capsys, argv):
    before = shop.workbook_path.read_bytes()

    exit_code, output = _run(capsys, shop.config_path, *argv)

    assert exit_code == 2
    assert output is None
    assert shop.workbook_path.read_bytes() == before


def test_product_details_and_listing_commands(shop, capsys):
    exit_code, added = _run(
        capsys,
        shop.config_path,
        "add-product",
        "--product-id", "P3",
        "--name", "iPhone 15 Pro",
        "--brand", "Apple",
        "--category", "Mobile Phone",
        "--selling-price", "134900",
        "--purchase-price", "120000",
        "--quantity", "2",
        "--imei", "356789012345678",
        "--variant", "color=Natural Titanium",
        "--variant", "storage=128GB",
    )
    assert exit_code == 0
    assert added["imei"] == "356789012345678"

    exit_code, shown = _run(capsys, shop.config_path, "show-product", "P3")
    assert exit_code == 0
    assert Decimal(shown["purchase_price"]) == Decimal("120000")
    assert shown["variants"] == [
        {"name": "color", "value": "Natural Titanium"},
        {"name": "storage", "value": "128GB"},
    ]

    exit_code, _ = _run(
        capsys,
        shop.config_path,
        "add-product",
        "--product-id", "P4",
        "--name", "iPhone 15 Pro",
        "--selling-price", "134900",
        "--imei", "356789012345678",
    )
    assert exit_code == 2

    exit_code, listed = _run(capsys, shop.config_path, "list-products")
    assert [item["product_id"] for item in listed] == ["P3", "P2", "P1"]
    exit_code, listed = _run(capsys, shop.config_path, "list-products", "--category", "Mobile Phone", "--low-stock")
    assert [item["product_id"] for item in listed] == ["P3", "P1"]
    exit_code, listed = _run(capsys, shop.config_path, "list-products", "--brand", "Anker")
    assert [item["product_id"] for item in listed] == ["P2"]

    exit_code, _ = _run(capsys, shop.config_path, "show-product", "NOPE")
    assert exit_code == 2

    exit_code, updated = _run(
        capsys, shop.config_path, "update-product", "--product-id", "P3", "--variant", "color=Black"
    )
    assert updated["variants"] == [{"name": "color", "value": "Black"}]
    context = core_logic.load_runtime_context(shop.config_path)
    assert core_logic.get_product(context, "P3").variants == (data_manager.VariantAttribute("color", "Black"),)


def test_update_product_cannot_overwrite_quantity(shop, capsys):
    with pytest.raises(SystemExit):
        cli.main(["--config", str(shop.config_path), "update-product", "--product-id", "P1", "--quantity", "99"])

    context = core_logic.load_runtime_context(shop.config_path)
    assert core_logic.get_product(context, "P1").quantity == 5


def test_schema_mismatch_blocks_writes(config_factory, capsys):
    bundle = config_factory(schema_version="0.1.0")

    exit_code, _ = _run(
        capsys,
        bundle.config_path,
        "add-product",
        "--product-id", "P1",
        "--name", "Galaxy A15",
        "--selling-price", "1000",
    )

    assert exit_code == 1
    context = core_logic.load_runtime_context(bundle.config_path)
    assert core_logic.list_products(context) == []


def test_setup_script_creates_workbook_from_config(config_factory, capsys):
    bundle = config_factory(make_relative=True)
    bundle.workbook_path.unlink()

    assert setup_excel.main(["--config", str(bundle.config_path)]) == 0
    assert bundle.workbook_path.exists()
    assert setup_excel.main(["--config", str(bundle.config_path)]) == 1
    assert "--force" in capsys.readouterr().out
    assert setup_excel.main(["--config", str(bundle.config_path), "--force"]) == 0
