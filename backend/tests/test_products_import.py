"""
Product catalogue and bulk import tests.

Verifies:
- Upsert creates with opening_stock, or updates and ADDS stock via a restock movement
- Descriptive edits never touch stock
- Header mapping and value coercion for CSV/JSON rows
- Import is best-effort: bad rows are reported, good rows commit, one ImportBatch per run
"""

import pytest

from duka.errors import InsufficientStock, Unauthorized, ValidationError
from duka.models import ImportBatch, Product, StockMovement
from duka.services import import_schemas, import_service, ledger_service, products_service


class TestUpsert:

    def test_upsert_creates_product_without_movement(self, db_session, shop_ja, manager):
        result = products_service.upsert_product(
            caller_id=manager.id, sku="FLT-100", shop_id=shop_ja.id, name="Oil Filter",
            price_cents=80_000, cost_cents=50_000, stock=12,
        )

        assert result.action == "created"
        product = db_session.get(Product, result.product_id)
        assert product.stock == 12
        assert product.opening_stock == 12
        assert product.product_group == "JA"
        assert db_session.query(StockMovement).count() == 0

    def test_upsert_existing_adds_stock(self, db_session, shop_ja, manager, make_product):
        product = make_product(shop_ja, sku="BRK-001", stock=10, category="Brakes")

        result = products_service.upsert_product(
            caller_id=manager.id, sku="BRK-001", shop_id=shop_ja.id, name="Brake Pads (Front)",
            price_cents=260_000, cost_cents=185_000, stock=5,
        )

        assert result == products_service.UpsertResult(action="updated", product_id=product.id)
        product = db_session.get(Product, product.id)
        assert product.stock == 15
        assert product.name == "Brake Pads (Front)"
        assert product.price_cents == 260_000
        # overwritten even when not supplied
        assert product.category is None

        movement = db_session.query(StockMovement).filter_by(product_id=product.id).one()
        assert movement.type == "restock"
        assert movement.quantity == 5
        assert movement.note == products_service.UPSERT_TOPUP_NOTE
        assert ledger_service.verify_product_ledger(product.id)["consistent"]

    def test_upsert_zero_stock_writes_no_movement(self, db_session, shop_ja, manager, make_product):
        product = make_product(shop_ja, stock=4)
        products_service.upsert_product(
            caller_id=manager.id, sku=product.sku, shop_id=shop_ja.id, name=product.name,
            price_cents=1, cost_cents=1, stock=0,
        )
        assert db_session.get(Product, product.id).stock == 4
        assert db_session.query(StockMovement).count() == 0

    def test_same_sku_in_other_shop_is_separate(self, db_session, shop_ja, shop_jc, manager, make_product):
        ja_product = make_product(shop_ja, sku="BRK-001", stock=10)

        result = products_service.upsert_product(
            caller_id=manager.id, sku="BRK-001", shop_id=shop_jc.id, name="Brake Pads - Front",
            price_cents=250_000, cost_cents=180_000, stock=3,
        )

        assert result.action == "created"
        assert result.product_id != ja_product.id
        assert db_session.get(Product, ja_product.id).stock == 10

    @pytest.mark.parametrize(
        "overrides",
        [
            {"stock": -1},
            {"stock": 10 ** 20},
            {"reorder_point": "lots"},
            {"price_cents": -100},
            {"cost_cents": 1.5},
            {"name": "   "},
            {"sku": ""},
            {"shop_id_field": "nope"},
        ],
    )
    def test_invalid_upsert_rejected(self, db_session, shop_ja, manager, overrides):
        kwargs = dict(
            caller_id=manager.id, sku="FLT-100", shop_id=shop_ja.id, name="Oil Filter",
            price_cents=100, cost_cents=50, stock=1,
        )
        kwargs.update(overrides)

        with pytest.raises(ValidationError):
            products_service.upsert_product(**kwargs)
        assert db_session.query(Product).count() == 0

    def test_sales_role_cannot_upsert(self, db_session, shop_ja, sales_ja):
        with pytest.raises(Unauthorized):
            products_service.upsert_product(
                caller_id=sales_ja.id, sku="FLT-100", shop_id=shop_ja.id, name="Oil Filter",
                price_cents=100, cost_cents=50, stock=1,
            )


class TestCatalogue:

    def test_create_product_and_duplicate_sku(self, db_session, shop_ja, manager):
        patch = {"sku": "SPK-010", "name": "Spark Plug", "price_cents": 35_000, "cost_cents": 20_000, "stock": 8}
        product = products_service.create_product(caller_id=manager.id, shop_id=shop_ja.id, patch=patch)

        assert product.stock == 8
        assert product.opening_stock == 8

        with pytest.raises(ValidationError) as exc_info:
            products_service.create_product(caller_id=manager.id, shop_id=shop_ja.id, patch=patch)
        assert exc_info.value.details["field"] == "sku"

    def test_update_product_rejects_stock(self, db_session, shop_ja, manager, make_product):
        product = make_product(shop_ja, stock=5)

        with pytest.raises(ValidationError):
            products_service.update_product(caller_id=manager.id, product_id=product.id, patch={"stock": 50})

        updated = products_service.update_product(
            caller_id=manager.id, product_id=product.id, patch={"name": "Brake Pads OEM", "sku": "HACK"},
        )
        assert updated.name == "Brake Pads OEM"
        assert updated.sku == "BRK-001"
        assert updated.stock == 5

    def test_restock_and_adjust(self, db_session, shop_ja, manager, make_product):
        product = make_product(shop_ja, stock=5, cost_cents=100)

        restocked = products_service.restock_product(
            caller_id=manager.id, product_id=product.id, quantity=10, cost_cents=120,
        )
        assert restocked.new_stock == 15
        assert db_session.get(Product, product.id).cost_cents == 120

        adjusted = products_service.adjust_stock(caller_id=manager.id, product_id=product.id, delta=-2, note="Damaged")
        assert adjusted.new_stock == 13

        with pytest.raises(InsufficientStock):
            products_service.adjust_stock(caller_id=manager.id, product_id=product.id, delta=-100)

        assert db_session.get(Product, product.id).stock == 13
        assert ledger_service.verify_product_ledger(product.id)["consistent"]

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_restock_quantity_must_be_positive(self, db_session, shop_ja, manager, make_product, quantity):
        product = make_product(shop_ja)
        with pytest.raises(ValidationError):
            products_service.restock_product(caller_id=manager.id, product_id=product.id, quantity=quantity)

    def test_low_stock(self, db_session, shop_ja, shop_jc, make_product):
        make_product(shop_ja, sku="A", name="Alpha", stock=2)
        make_product(shop_ja, sku="B", name="Bravo", stock=50)
        make_product(shop_jc, sku="C", name="Charlie", stock=0)

        assert [p.sku for p in products_service.get_low_stock(shop_ja.id)] == ["A"]
        assert [p.sku for p in products_service.get_low_stock()] == ["C", "A"]
        assert [p.sku for p in products_service.get_low_stock(shop_ja.id, threshold=100)] == ["A", "B"]

    def test_products_for_shop_by_code_includes_unlinked_rows(self, db_session, shop_ja, make_product):
        make_product(shop_ja, sku="LINKED", name="Linked")
        legacy = Product(product_group="JA", sku="LEGACY", name="Legacy", stock=1, opening_stock=1)
        db_session.add(legacy)
        db_session.commit()

        by_code = products_service.get_products_for_shop(shop_code="JA")
        assert {p.sku for p in by_code} == {"LINKED", "LEGACY"}
        assert {p.sku for p in products_service.get_products_for_shop(shop_id=shop_ja.id)} == {"LINKED"}

        assert products_service.assign_shop_ids() == 1
        assert db_session.get(Product, legacy.id).shop_id == shop_ja.id
        assert products_service.assign_shop_ids() == 0


class TestHeaderMapping:

    @pytest.mark.parametrize(
        "header, field",
        [
            ("SKU", "sku"),
            ("Item Code", "sku"),
            ("Product Name", "name"),
            ("Description", "name"),
            ("Selling Price", "price"),
            ("price", "price"),
            ("Cost Price", "cost"),
            ("Stock Qty", "stock"),
            ("On Hand", "stock"),
            ("Product Group", "category"),
            ("Vendor", "supplier"),
            ("Measurement Unit", "unit"),
            ("TaxPercent", "tax_percent"),
            ("PreferredQuantity", "preferred_quantity"),
            ("IsEnabled", "is_enabled"),
            ("Colour", None),
            ("", None),
        ],
    )
    def test_field_for_header(self, header, field):
        assert import_schemas.field_for_header(header) == field

    def test_last_matching_column_wins(self):
        mapping = import_schemas.map_headers(["Name", "Item Name", "SKU"])
        assert mapping == {"name": "Item Name", "sku": "SKU"}

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("KSh 1,250.50", 1250.5),
            ("12", 12),
            ("", 0),
            (None, 0),
            ("abc", 0),
            (7, 7),
            (float("nan"), 0),
            (float("inf"), 0),
            ("-Infinity", 0),
        ],
    )
    def test_to_number(self, raw, expected):
        assert import_schemas.to_number(raw) == expected

    @pytest.mark.parametrize("raw, expected", [(True, True), (1, True), ("1", True), ("true", True), ("yes", False), (0, False)])
    def test_to_bool(self, raw, expected):
        assert import_schemas.to_bool(raw) is expected

    def test_build_rows_defaults(self):
        rows = import_schemas.build_rows(
            [{"Price": "100"}, {"SKU": "X-1", "Name": "Fan Belt", "Price": "1,000", "Stock": "3", "Unit": "set"}],
            source_format="json",
        )

        first, second = rows
        assert first.row_index == 1
        assert first.synthetic_sku is True
        assert first.sku.startswith("JSON-") and first.sku.endswith("-1")
        assert first.name == "Product Row 1"
        assert first.price_cents == 10_000
        assert first.measurement_unit == "pcs"

        assert second.sku == "X-1"
        assert second.price_cents == 100_000
        assert second.stock == 3
        assert second.measurement_unit == "set"
        assert second.synthetic_sku is False


class TestImportBatch:

    def test_partial_import_reports_row_errors(self, db_session, shop_ja, manager, make_product):
        existing = make_product(shop_ja, sku="BRK-001", stock=10)
        rows = [
            {"SKU": "BRK-001", "Name": "Brake Pads - Front", "Price": "2500", "Cost": "1800", "Stock": "5"},
            {"SKU": "OIL-002", "Name": "Engine Oil", "Price": "4500", "Cost": "3000", "Stock": "-2"},
            {"SKU": "FLT-003", "Name": "Air Filter", "Price": "-1", "Cost": "0", "Stock": "1"},
            {"SKU": "BLT-004", "Name": "Fan Belt", "Price": "900", "Cost": "500", "Stock": "7", "ReorderPoint": "2"},
        ]

        summary = import_service.import_batch(
            caller_id=manager.id, shop_id=shop_ja.id, rows=rows, file_name="stock.csv", source_format="csv",
        )

        assert summary.imported == 2
        assert summary.created == 1
        assert summary.updated == 1
        assert len(summary.errors) == 2
        assert summary.errors[0].startswith("Row 2: ")
        assert summary.errors[1].startswith("Row 3: ")

        assert db_session.get(Product, existing.id).stock == 15
        belt = products_service.find_by_sku("BLT-004", shop_ja.id)
        assert belt.stock == 7
        assert belt.reorder_point == 2
        assert belt.price_cents == 90_000
        assert products_service.find_by_sku("OIL-002", shop_ja.id) is None

        batch = db_session.get(ImportBatch, summary.batch_id)
        assert batch.status == "partial"
        assert batch.total_rows == 4
        assert batch.error_rows == 2
        assert batch.errors == summary.errors
        assert batch.file_name == "stock.csv"

    def test_same_sku_twice_in_one_batch(self, db_session, shop_ja, manager):
        rows = [
            {"sku": "SPK-1", "name": "Spark Plug", "price": 350, "stock": 4},
            {"sku": "SPK-1", "name": "Spark Plug", "price": 350, "stock": 6},
        ]
        summary = import_service.import_batch(
            caller_id=manager.id, shop_id=shop_ja.id, rows=rows, source_format="json",
        )

        assert (summary.created, summary.updated) == (1, 1)
        product = products_service.find_by_sku("SPK-1", shop_ja.id)
        assert product.stock == 10
        assert product.opening_stock == 4
        assert ledger_service.verify_product_ledger(product.id)["consistent"]

    def test_empty_import(self, db_session, shop_ja, manager):
        summary = import_service.import_batch(caller_id=manager.id, shop_id=shop_ja.id, rows=[])

        assert summary.imported == 0
        assert summary.errors == [import_service.EMPTY_IMPORT_MESSAGE]
        assert summary.batch_id is None
        assert db_session.query(ImportBatch).count() == 0

    def test_all_rows_failing_marks_batch_failed(self, db_session, shop_ja, manager):
        summary = import_service.import_batch(
            caller_id=manager.id, shop_id=shop_ja.id, rows=[{"sku": "A", "stock": "-1"}], source_format="json",
        )
        assert summary.imported == 0
        assert db_session.get(ImportBatch, summary.batch_id).status == "failed"
        assert [b.id for b in import_service.list_import_batches(shop_ja.id)] == [summary.batch_id]

    def test_oversized_numbers_fail_only_their_row(self, db_session, shop_ja, manager):
        rows = [
            {"SKU": "OK-1", "Name": "Spark Plug", "Price": "350", "Stock": "3"},
            {"SKU": "BAD-1", "Name": "Fan Belt", "Price": "900", "Stock": "99999999999999999999"},
            {"SKU": "BAD-2", "Name": "Air Filter", "Price": "900", "Stock": "1", "ReorderPoint": "99999999999999"},
        ]

        summary = import_service.import_batch(
            caller_id=manager.id, shop_id=shop_ja.id, rows=rows, source_format="csv",
        )

        assert summary.imported == 1
        assert summary.errors == [
            "Row 2: stock cannot exceed 999999999",
            "Row 3: reorder_point cannot exceed 999999999",
        ]
        assert products_service.find_by_sku("OK-1", shop_ja.id).stock == 3
        assert products_service.find_by_sku("BAD-1", shop_ja.id) is None
        assert db_session.get(ImportBatch, summary.batch_id).status == "partial"

    def test_non_finite_numbers_default_to_zero(self, db_session, shop_ja, manager):
        rows = [
            {"SKU": "OK-1", "Name": "Spark Plug", "Price": 350, "Stock": 3},
            {"SKU": "NAN-1", "Name": "Fan Belt", "Price": float("nan"), "Stock": float("inf")},
        ]

        summary = import_service.import_batch(
            caller_id=manager.id, shop_id=shop_ja.id, rows=rows, source_format="json",
        )

        assert summary.imported == 2
        assert summary.errors == []
        belt = products_service.find_by_sku("NAN-1", shop_ja.id)
        assert (belt.price_cents, belt.stock) == (0, 0)
        assert products_service.find_by_sku("OK-1", shop_ja.id).stock == 3

    def test_unsupported_format(self, db_session, shop_ja, manager):
        with pytest.raises(ValidationError):
            import_service.import_batch(caller_id=manager.id, shop_id=shop_ja.id, rows=[{"sku": "A"}], source_format="xml")

    def test_sales_role_cannot_import(self, db_session, shop_ja, sales_ja):
        with pytest.raises(Unauthorized):
            import_service.import_batch(caller_id=sales_ja.id, shop_id=shop_ja.id, rows=[{"sku": "A"}])
        assert db_session.query(Product).count() == 0
