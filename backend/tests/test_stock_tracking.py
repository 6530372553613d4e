import pytest
from pydantic import ValidationError

from models.inventory import StockReservation
from models.stock import MovementStatus, MovementType, ReferenceType, StockMovement
from schemas.operations import (
    OperationItem, PurchaseReceiptCreate, ReturnCreate, SaleCreate, SaleItem, TransferCreate,
    TransformationCreate, WriteOffCreate
)
from schemas.stock import AdjustmentCreate
from services.reservations import reserve_stock
from services.stock_ledger import get_inventory
from services.stock_tracking import (
    track_adjustment, track_purchase_order, track_return, track_sales_order, track_transfer,
    track_write_off, transform_product
)
from utils.errors import TransactionFailed


def stock(db, product_id):
    return get_inventory(db, product_id).current_stock


def test_purchase_receipt_books_every_line(db, user, make_product):
    first, second = make_product(stock=0), make_product(stock=2)

    movements = track_purchase_order(db, PurchaseReceiptCreate(
        po_number="PO-7", supplier="Acme",
        items=[OperationItem(product_id=first, quantity=5, unit_cost=1.5),
               OperationItem(product_id=second, quantity=3)],
    ), user)

    assert [m.movement_type for m in movements] == [MovementType.PURCHASE, MovementType.PURCHASE]
    assert movements[0].reference_type == ReferenceType.PURCHASE_ORDER.value
    assert movements[0].reference_number == "PO-7"
    assert movements[0].supplier == "Acme"
    assert movements[0].total_value == 7.5
    assert (stock(db, first), stock(db, second)) == (5, 5)


def test_purchase_receipt_with_unknown_product_rolls_back(db, user, make_product):
    pid = make_product(stock=0)

    with pytest.raises(TransactionFailed) as excinfo:
        track_purchase_order(db, PurchaseReceiptCreate(
            items=[OperationItem(product_id=pid, quantity=5), OperationItem(product_id=9999, quantity=1)],
        ), user)

    assert excinfo.value.status_code == 404
    assert stock(db, pid) == 0


def test_sale_consumes_own_reservation_only(db, user, make_product):
    pid = make_product(stock=10)
    other = reserve_stock(db, pid, 4)
    own = reserve_stock(db, pid, 3)

    movements = track_sales_order(db, SaleCreate(
        order_number="SO-1", customer="Bob",
        items=[SaleItem(product_id=pid, quantity=3, reservation_id=own.reservation_id)],
    ), user)

    inventory = get_inventory(db, pid)
    assert (inventory.current_stock, inventory.reserved_stock, inventory.available_stock) == (7, 4, 3)
    remaining = [r.reservation_id for r in db.query(StockReservation).all()]
    assert remaining == [other.reservation_id]

    sale = movements[0]
    assert sale.movement_type == MovementType.SALE
    assert (sale.previous_stock, sale.new_stock) == (10, 7)
    assert not sale.inventory_applied
    assert sale.reference_type == ReferenceType.SALES_ORDER.value
    assert sale.customer == "Bob"


def test_sale_cannot_take_stock_reserved_by_others(db, user, make_product):
    pid = make_product(stock=10)
    reserve_stock(db, pid, 8)

    with pytest.raises(TransactionFailed) as excinfo:
        track_sales_order(db, SaleCreate(items=[SaleItem(product_id=pid, quantity=3)]), user)

    assert excinfo.value.code == "INSUFFICIENT_STOCK"
    assert stock(db, pid) == 10
    assert db.query(StockMovement).filter(StockMovement.movement_type == MovementType.SALE).count() == 0


def test_sale_with_unknown_reservation(db, user, make_product):
    pid = make_product(stock=10)

    with pytest.raises(TransactionFailed) as excinfo:
        track_sales_order(db, SaleCreate(items=[SaleItem(product_id=pid, quantity=1, reservation_id="RES-X")]),
                          user)

    assert excinfo.value.status_code == 404
    assert stock(db, pid) == 10


def test_failed_sale_line_reverses_earlier_lines(db, user, make_product):
    first, second = make_product(stock=10), make_product(stock=1)

    with pytest.raises(TransactionFailed):
        track_sales_order(db, SaleCreate(items=[
            SaleItem(product_id=first, quantity=4),
            SaleItem(product_id=second, quantity=2),
        ]), user)

    assert stock(db, first) == 10
    sale = db.query(StockMovement).filter(StockMovement.movement_type == MovementType.SALE,
                                          StockMovement.is_reversal.is_(False)).one()
    assert sale.status == MovementStatus.REVERSED


def test_failed_sale_restores_consumed_reservation(db, user, make_product):
    first, second = make_product(stock=10), make_product(stock=1)
    hold = reserve_stock(db, first, 4, user=user, reservation_id="CART-1", reference_id="checkout-9",
                         expires_in_minutes=15)
    expires_at = hold.expires_at

    with pytest.raises(TransactionFailed):
        track_sales_order(db, SaleCreate(items=[
            SaleItem(product_id=first, quantity=4, reservation_id="CART-1"),
            SaleItem(product_id=second, quantity=5),
        ]), user)

    inventory = get_inventory(db, first)
    assert (inventory.current_stock, inventory.reserved_stock, inventory.available_stock) == (10, 4, 6)
    restored = db.query(StockReservation).filter(StockReservation.inventory_id == inventory.id).all()
    assert [r.reservation_id for r in restored] == ["CART-1"]
    assert restored[0].quantity == 4
    assert restored[0].expires_at == expires_at
    assert restored[0].reference_id == "checkout-9"
    assert restored[0].reserved_by_id == user.id


def test_returns_move_stock_in_both_directions(db, user, make_product):
    pid = make_product(stock=5)

    customer = track_return(db, ReturnCreate(
        return_type="customer_return", return_number="RMA-1",
        items=[OperationItem(product_id=pid, quantity=2)],
    ), user)
    supplier = track_return(db, ReturnCreate(
        return_type="supplier_return", reason="Faulty batch",
        items=[OperationItem(product_id=pid, quantity=4)],
    ), user)

    assert customer[0].movement_type == MovementType.RETURN_IN
    assert customer[0].reason == "Customer return"
    assert supplier[0].movement_type == MovementType.RETURN_OUT
    assert supplier[0].reason == "Faulty batch"
    assert stock(db, pid) == 3


def test_adjustment(db, user, make_product):
    pid = make_product(stock=5)

    movement = track_adjustment(db, AdjustmentCreate(
        product_id=pid, movement_type="adjustment_out", quantity=2, reason="Cycle count",
    ), user)

    assert movement.reference_type == ReferenceType.ADJUSTMENT.value
    assert movement.reference_id == str(pid)
    assert stock(db, pid) == 3


def test_transfer_books_out_then_in(db, user, make_product):
    pid = make_product(stock=5)

    out_movement, in_movement = track_transfer(db, TransferCreate(
        product_id=pid, quantity=2, from_location="main_warehouse", to_location="store", transfer_number="TR-1",
    ), user)

    assert out_movement.movement_type == MovementType.TRANSFER_OUT
    assert out_movement.location == "main_warehouse"
    assert in_movement.movement_type == MovementType.TRANSFER_IN
    assert in_movement.location == "store"
    assert (in_movement.from_location, in_movement.to_location) == ("main_warehouse", "store")
    assert stock(db, pid) == 5


def test_transfer_of_missing_stock_fails_cleanly(db, user, make_product):
    pid = make_product(stock=1)

    with pytest.raises(TransactionFailed):
        track_transfer(db, TransferCreate(product_id=pid, quantity=2, from_location="a", to_location="b"), user)

    assert stock(db, pid) == 1


def test_transfer_requires_distinct_locations():
    with pytest.raises(ValidationError):
        TransferCreate(product_id=1, quantity=1, from_location="a", to_location="a")


def test_write_off(db, user, make_product):
    pid = make_product(stock=5, cost=4.0)

    movement = track_write_off(db, WriteOffCreate(
        product_id=pid, write_off_type="damage", quantity=1, reason="Dropped",
    ), user)

    assert movement.movement_type == MovementType.DAMAGE
    assert movement.reference_type == ReferenceType.WRITE_OFF.value
    assert movement.total_value == 4.0
    assert stock(db, pid) == 4


def test_transformation_carries_cost(db, user, make_product):
    base = make_product(stock=10, cost=2.0)
    target = make_product(stock=0, cost=9.0)

    consumed, produced = transform_product(db, TransformationCreate(
        base_product_id=base, target_product_id=target, quantity=4, unit_transformation_cost=0.5,
    ), user)

    assert consumed.movement_type == MovementType.CONSUMPTION
    assert consumed.unit_cost == 2.0
    assert produced.movement_type == MovementType.PRODUCTION
    assert produced.unit_cost == 2.5
    assert produced.total_value == 10.0
    assert produced.reference_type == ReferenceType.PRODUCTION.value
    assert (stock(db, base), stock(db, target)) == (6, 4)


def test_transformation_without_base_stock_changes_nothing(db, user, make_product):
    base = make_product(stock=1)
    target = make_product(stock=0)

    with pytest.raises(TransactionFailed):
        transform_product(db, TransformationCreate(base_product_id=base, target_product_id=target, quantity=2),
                          user)

    assert (stock(db, base), stock(db, target)) == (1, 0)
    assert db.query(StockMovement).filter(StockMovement.product_id == target).count() == 0
