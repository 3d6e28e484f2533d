"""
Tests for services.transaction_service: validation, quantity rules,
atomic commit of header/items/movements and the transaction queries.
"""

import re
from datetime import datetime, timedelta, timezone

import pytest

from stock_ledger.models.stock_movement import StockMovement
from stock_ledger.models.transaction import StockTransaction, TransactionType
from stock_ledger.schemas.transaction import StockOutRequest
from stock_ledger.services import movement_log, transaction_service
from stock_ledger.services.exceptions import (
    InsufficientStockError,
    LedgerValidationError,
    ProductNotFoundError,
    SupplierNotFoundError,
    TransactionNotFoundError,
)


def _movement_count(db):
    return db.query(StockMovement).count()


class TestQuantityChange:
    @pytest.mark.parametrize("txn_type, quantity, expected", [
        ("IN", 5, 5),
        ("RETURN_IN", 5, 5),
        ("OUT", 5, -5),
        ("RETURN_OUT", 5, -5),
        ("ADJUST", 5, 5),
        ("ADJUST", -5, -5),
    ])
    def test_signs(self, txn_type, quantity, expected):
        assert transaction_service.calculate_quantity_change(txn_type, quantity) == expected

    def test_accepts_enum(self):
        assert transaction_service.calculate_quantity_change(TransactionType.OUT, 3) == -3

    def test_unknown_type(self):
        with pytest.raises(LedgerValidationError) as exc:
            transaction_service.calculate_quantity_change("TRANSFER", 1)
        assert exc.value.field == "type"


class TestTransactionTotals:
    def test_costed_items(self):
        request = transaction_service.parse_transaction_request({
            "type": "IN",
            "supplier_id": "s-1",
            "items": [
                {"product_id": "a", "quantity": 10, "unit_cost": 1.5},
                {"product_id": "b", "quantity": 4, "unit_cost": 2.0},
            ],
        })
        totals = transaction_service.calculate_transaction_totals(request.items)
        assert totals["total_items"] == 2
        assert totals["total_quantity"] == 14
        assert totals["total_cost"] == 23.0
        assert totals["has_costing"] is True
        assert totals["has_pricing"] is False

    def test_adjust_has_no_values(self):
        request = transaction_service.parse_transaction_request({
            "type": "ADJUST",
            "items": [{"product_id": "a", "quantity": -2}],
        })
        totals = transaction_service.calculate_transaction_totals(request.items)
        assert totals["total_cost"] == 0.0
        assert totals["total_price"] == 0.0
        assert not totals["has_costing"] and not totals["has_pricing"]


class TestRequestValidation:
    @pytest.mark.parametrize("payload, field", [
        ({"type": "IN", "items": [{"product_id": "a", "quantity": 1, "unit_cost": 1}]}, "supplier_id"),
        ({"type": "IN", "supplier_id": "s", "items": [{"product_id": "a", "quantity": 1}]}, "items.0.unit_cost"),
        ({"type": "OUT", "items": []}, "items"),
        ({"type": "OUT", "items": [{"product_id": "a", "quantity": 0, "unit_price": 1}]}, "items.0.quantity"),
        ({"type": "OUT", "items": [{"product_id": "a", "quantity": 2, "unit_price": -1}]}, "items.0.unit_price"),
        ({"type": "ADJUST", "items": [{"product_id": "a", "quantity": 0}]}, "items.0.quantity"),
        ({"type": "ADJUST", "items": [{"product_id": "a", "quantity": True}]}, "items.0.quantity"),
        ({"type": "OUT", "items": [{"product_id": "a", "quantity": True, "unit_price": 1}]}, "items.0.quantity"),
        ({"type": "OUT", "items": [{"product_id": "a", "quantity": "2", "unit_price": 1}]}, "items.0.quantity"),
        ({"type": "RETURN_OUT", "items": [{"product_id": "a", "quantity": 1}]}, "items.0.unit_price"),
        ({"type": "TRANSFER", "items": [{"product_id": "a", "quantity": 1}]}, "type"),
        ({"items": [{"product_id": "a", "quantity": 1}]}, "type"),
    ])
    def test_rejected_with_field(self, payload, field):
        with pytest.raises(LedgerValidationError) as exc:
            transaction_service.parse_transaction_request(payload)
        assert exc.value.field == field

    def test_notes_too_long(self):
        with pytest.raises(LedgerValidationError) as exc:
            transaction_service.parse_transaction_request({
                "type": "ADJUST",
                "notes": "x" * 1001,
                "items": [{"product_id": "a", "quantity": 1}],
            })
        assert exc.value.field == "notes"

    def test_return_in_without_supplier_or_cost(self):
        request = transaction_service.parse_transaction_request({
            "type": "RETURN_IN",
            "items": [{"product_id": "a", "quantity": 1}],
        })
        assert request.supplier_id is None
        assert request.items[0].unit_cost is None

    def test_defaults(self):
        request = transaction_service.parse_transaction_request({
            "type": "ADJUST",
            "notes": "  recount  ",
            "items": [{"product_id": "a", "quantity": 1}],
        })
        assert request.notes == "recount"
        assert request.created_by == "system"
        assert request.transaction_date.tzinfo is None

    def test_aware_date_normalised_to_utc(self):
        request = transaction_service.parse_transaction_request({
            "type": "ADJUST",
            "transaction_date": "2025-03-01T10:00:00+02:00",
            "items": [{"product_id": "a", "quantity": 1}],
        })
        assert request.transaction_date == datetime(2025, 3, 1, 8, 0, 0)

    def test_nothing_written_on_validation_failure(self, db, make_product):
        product = make_product()
        with pytest.raises(LedgerValidationError):
            transaction_service.create_transaction(db, {"type": "OUT", "items": [{"product_id": product.id}]})
        assert db.query(StockTransaction).count() == 0


class TestCreateTransaction:
    def test_sequential_in_out_in(self, db, make_product, stock_in, stock_out):
        product = make_product()
        stock_in(product.id, 20)
        assert movement_log.current_balance(db, product.id) == 20
        stock_out(product.id, 8)
        assert movement_log.current_balance(db, product.id) == 12
        stock_in(product.id, 15)
        assert movement_log.current_balance(db, product.id) == 27

        history = movement_log.movements_for_product(db, product.id, newest_first=False)
        assert [m.quantity_after for m in history] == [20, 12, 27]
        assert [m.quantity_before for m in history] == [0, 20, 12]
        assert [m.sequence for m in history] == [1, 2, 3]

    def test_header_items_and_movements(self, db, make_product, supplier):
        a, b = make_product(), make_product()
        txn = transaction_service.create_transaction(db, {
            "type": "IN",
            "supplier_id": supplier.id,
            "notes": "Delivery 42",
            "created_by": "alice",
            "items": [
                {"product_id": a.id, "quantity": 10, "unit_cost": 1.5},
                {"product_id": b.id, "quantity": 4, "unit_cost": 2.0},
            ],
        })
        assert txn.type == TransactionType.IN
        assert txn.supplier_id == supplier.id
        assert txn.notes == "Delivery 42"
        assert txn.created_by == "alice"
        assert txn.total_value == 23.0
        assert [i.line_number for i in txn.items] == [1, 2]
        assert len(txn.movements) == 2
        assert {m.transaction_item_id for m in txn.movements} == {i.id for i in txn.items}

    def test_accepts_request_model(self, db, make_product, stock_in):
        product = make_product()
        stock_in(product.id, 5)
        request = StockOutRequest(type="OUT", items=[{"product_id": product.id, "quantity": 2, "unit_price": 3}])
        txn = transaction_service.create_transaction(db, request)
        assert txn.total_value == 6.0
        assert movement_log.current_balance(db, product.id) == 3

    def test_oversell_rejected(self, db, make_product, stock_in, stock_out):
        product = make_product()
        stock_in(product.id, 5)
        with pytest.raises(InsufficientStockError, match="Available: 5, Requested: 10") as exc:
            stock_out(product.id, 10)
        assert exc.value.product_id == product.id
        assert exc.value.available == 5
        assert exc.value.requested == 10
        assert movement_log.current_balance(db, product.id) == 5

    def test_return_out_checks_stock(self, db, make_product):
        product = make_product()
        with pytest.raises(InsufficientStockError):
            transaction_service.create_transaction(db, {
                "type": "RETURN_OUT",
                "items": [{"product_id": product.id, "quantity": 1, "unit_price": 1}],
            })

    def test_negative_adjustment_allowed(self, db, make_product, stock_in, adjust):
        product = make_product()
        stock_in(product.id, 3)
        txn = adjust(product.id, -5)
        assert txn.total_value is None
        assert movement_log.current_balance(db, product.id) == -2
        movement = txn.movements[0]
        assert (movement.quantity_before, movement.quantity_change, movement.quantity_after) == (3, -5, -2)

    def test_out_blocked_after_negative_adjustment(self, db, make_product, adjust, stock_out):
        product = make_product()
        adjust(product.id, -1)
        with pytest.raises(InsufficientStockError, match="Available: -1, Requested: 1"):
            stock_out(product.id, 1)

    def test_atomic_when_later_line_fails(self, db, make_product, stock_in):
        a, b = make_product(), make_product()
        stock_in(a.id, 10)
        stock_in(b.id, 2)
        before = _movement_count(db)

        with pytest.raises(InsufficientStockError) as exc:
            transaction_service.create_transaction(db, {
                "type": "OUT",
                "items": [
                    {"product_id": a.id, "quantity": 5, "unit_price": 1},
                    {"product_id": b.id, "quantity": 5, "unit_price": 1},
                ],
            })
        assert exc.value.product_id == b.id
        assert _movement_count(db) == before
        assert db.query(StockTransaction).count() == 2
        assert movement_log.current_balance(db, a.id) == 10

    def test_repeated_product_lines_chain(self, db, make_product, supplier):
        product = make_product()
        txn = transaction_service.create_transaction(db, {
            "type": "IN",
            "supplier_id": supplier.id,
            "items": [
                {"product_id": product.id, "quantity": 5, "unit_cost": 1},
                {"product_id": product.id, "quantity": 3, "unit_cost": 1},
            ],
        })
        db.expire_all()
        chain = transaction_service.get_transaction(db, txn.id).movements
        assert [m.sequence for m in chain] == [1, 2]
        assert [(m.quantity_before, m.quantity_after) for m in chain] == [(0, 5), (5, 8)]

    def test_total_value_only_when_priced(self, db, make_product, stock_in):
        product = make_product()
        stock_in(product.id, 5)
        returned = transaction_service.create_transaction(db, {
            "type": "RETURN_IN",
            "items": [{"product_id": product.id, "quantity": 1}],
        })
        assert returned.total_value is None

        sent_back = transaction_service.create_transaction(db, {
            "type": "RETURN_OUT",
            "items": [{"product_id": product.id, "quantity": 2, "unit_price": 1.25}],
        })
        assert sent_back.total_value == 2.5

    def test_repeated_lines_checked_against_running_balance(self, db, make_product, stock_in):
        product = make_product()
        stock_in(product.id, 5)
        with pytest.raises(InsufficientStockError, match="Available: 2, Requested: 3"):
            transaction_service.create_transaction(db, {
                "type": "OUT",
                "items": [
                    {"product_id": product.id, "quantity": 3, "unit_price": 1},
                    {"product_id": product.id, "quantity": 3, "unit_price": 1},
                ],
            })
        assert movement_log.current_balance(db, product.id) == 5

    def test_unknown_products_reported(self, db, make_product, stock_in):
        product = make_product()
        stock_in(product.id, 5)
        with pytest.raises(ProductNotFoundError) as exc:
            transaction_service.create_transaction(db, {
                "type": "OUT",
                "items": [
                    {"product_id": product.id, "quantity": 1, "unit_price": 1},
                    {"product_id": "missing-1", "quantity": 1, "unit_price": 1},
                ],
            })
        assert exc.value.product_ids == ["missing-1"]
        assert movement_log.current_balance(db, product.id) == 5

    def test_unknown_supplier(self, db, make_product):
        product = make_product()
        with pytest.raises(SupplierNotFoundError) as exc:
            transaction_service.create_transaction(db, {
                "type": "IN",
                "supplier_id": "nope",
                "items": [{"product_id": product.id, "quantity": 1, "unit_cost": 1}],
            })
        assert exc.value.field == "supplier_id"
        assert db.query(StockTransaction).count() == 0

    def test_return_in_validates_given_supplier(self, db, make_product):
        product = make_product()
        with pytest.raises(SupplierNotFoundError):
            transaction_service.create_transaction(db, {
                "type": "RETURN_IN",
                "supplier_id": "nope",
                "items": [{"product_id": product.id, "quantity": 1}],
            })


class TestReferenceNumbers:
    def test_format_and_increment(self, make_product, stock_in):
        product = make_product()
        today = datetime.now(timezone.utc).strftime("%Y%m%d")
        first = stock_in(product.id, 1)
        second = stock_in(product.id, 1)
        assert first.reference_number == f"IN-{today}-0001"
        assert second.reference_number == f"IN-{today}-0002"

    def test_prefix_per_type(self, make_product, stock_in, stock_out, adjust, db):
        product = make_product()
        stock_in(product.id, 5)
        out = stock_out(product.id, 1)
        adj = adjust(product.id, 1)
        rin = transaction_service.create_transaction(db, {
            "type": "RETURN_IN", "items": [{"product_id": product.id, "quantity": 1}],
        })
        rout = transaction_service.create_transaction(db, {
            "type": "RETURN_OUT", "items": [{"product_id": product.id, "quantity": 1, "unit_price": 1}],
        })
        for txn, prefix in ((out, "OUT"), (adj, "ADJ"), (rin, "RIN"), (rout, "ROUT")):
            assert re.fullmatch(rf"{prefix}-\d{{8}}-0001", txn.reference_number)


class TestTransactionQueries:
    def test_get_transaction(self, db, make_product, stock_in):
        product = make_product()
        txn = stock_in(product.id, 3)
        fetched = transaction_service.get_transaction(db, txn.id)
        assert fetched.reference_number == txn.reference_number
        assert len(fetched.items) == 1
        assert len(fetched.movements) == 1

    def test_get_missing_transaction(self, db):
        with pytest.raises(TransactionNotFoundError):
            transaction_service.get_transaction(db, "missing")

    def test_list_filters(self, db, make_product, stock_in, stock_out):
        a, b = make_product(), make_product()
        stock_in(a.id, 10, notes="First delivery")
        stock_in(b.id, 10)
        stock_out(a.id, 2)

        result = transaction_service.list_transactions(db)
        assert result["pagination"] == {"page": 1, "limit": 50, "total": 3, "pages": 1}

        outs = transaction_service.list_transactions(db, type=TransactionType.OUT)
        assert [t.type for t in outs["transactions"]] == [TransactionType.OUT]

        for_a = transaction_service.list_transactions(db, product_id=a.id)
        assert for_a["pagination"]["total"] == 2

        searched = transaction_service.list_transactions(db, search="first")
        assert [t.notes for t in searched["transactions"]] == ["First delivery"]

    def test_list_by_transaction_date(self, db, make_product, stock_in):
        product = make_product()
        stock_in(product.id, 1, transaction_date="2024-01-10T09:00:00")
        stock_in(product.id, 1, transaction_date="2024-02-10T09:00:00")

        result = transaction_service.list_transactions(
            db, start_date=datetime(2024, 2, 1), end_date=datetime(2024, 2, 28)
        )
        assert result["pagination"]["total"] == 1
        assert result["transactions"][0].transaction_date == datetime(2024, 2, 10, 9, 0, 0)

    def test_list_paging(self, db, make_product, stock_in):
        product = make_product()
        start = datetime(2024, 5, 1)
        for day in range(5):
            stock_in(product.id, 1, transaction_date=(start + timedelta(days=day)).isoformat())

        page = transaction_service.list_transactions(db, page=2, limit=2)
        assert page["pagination"] == {"page": 2, "limit": 2, "total": 5, "pages": 3}
        assert [t.transaction_date.day for t in page["transactions"]] == [3, 2]

    def test_bad_page(self, db):
        with pytest.raises(LedgerValidationError) as exc:
            transaction_service.list_transactions(db, page=0)
        assert exc.value.field == "page"
