import pytest

from models.log import Log
from models.stock import MovementStatus, MovementType, StockMovement
from schemas.stock import MovementCreate
from services.reservations import reserve_stock
from services.stock_ledger import get_inventory, record_movement
from services.transactions import ReleaseReservation, ReverseMovement, Step, TransactionManager
from utils.errors import InsufficientStock, TransactionFailed, TransientConflict

NO_WAIT = {"sleep": lambda seconds: None}


def movement_step(name, user, product_id, movement_type, quantity):
    payload = MovementCreate(product_id=product_id, movement_type=movement_type, quantity=quantity)
    return Step(
        name=name,
        run=lambda db: record_movement(db, payload, user, commit=False),
        undo=lambda movement: ReverseMovement(movement.id),
    )


def test_execute_with_retry_counts_attempts(db, user):
    calls = []

    def operation(db):
        calls.append(1)
        if len(calls) < 3:
            raise TransientConflict("version moved")
        return "done"

    manager = TransactionManager(db, user, retry_options=NO_WAIT)

    assert manager.execute_with_retry(operation) == "done"
    assert manager.last_attempts == 3


def test_all_steps_succeed(db, user, make_product):
    first, second = make_product(stock=0), make_product(stock=0)
    manager = TransactionManager(db, user)

    movements = manager.execute_with_rollback([
        movement_step("first", user, first, MovementType.PURCHASE, 3),
        movement_step("second", user, second, MovementType.PURCHASE, 4),
    ], "receipt")

    assert [m.new_stock for m in movements] == [3, 4]


def test_failure_compensates_completed_steps_in_reverse(db, user, make_product):
    first, second = make_product(stock=5), make_product(stock=1)
    manager = TransactionManager(db, user)

    with pytest.raises(TransactionFailed) as excinfo:
        manager.execute_with_rollback([
            movement_step("take_first", user, first, MovementType.SALE, 2),
            movement_step("add_first", user, first, MovementType.PURCHASE, 10),
            movement_step("take_second", user, second, MovementType.SALE, 2),
        ], "order")

    failure = excinfo.value
    assert isinstance(failure.__cause__, InsufficientStock)
    assert failure.code == "INSUFFICIENT_STOCK"
    assert failure.status_code == 400
    assert failure.operation == "order"
    assert "take_second" in failure.message

    assert get_inventory(db, first).current_stock == 5
    assert get_inventory(db, second).current_stock == 1
    originals = (
        db.query(StockMovement)
        .filter(StockMovement.product_id == first, StockMovement.is_reversal.is_(False),
                StockMovement.movement_type != MovementType.INITIAL_STOCK)
        .all()
    )
    assert {m.status for m in originals} == {MovementStatus.REVERSED}
    reversals = (
        db.query(StockMovement)
        .filter(StockMovement.is_reversal.is_(True))
        .order_by(StockMovement.id)
        .all()
    )
    # Last completed step is undone first
    assert [r.movement_type for r in reversals] == [MovementType.PURCHASE, MovementType.SALE]


def test_first_step_failure_has_nothing_to_undo(db, user, make_product):
    pid = make_product(stock=0)
    manager = TransactionManager(db, user)

    with pytest.raises(TransactionFailed):
        manager.execute_with_rollback([movement_step("take", user, pid, MovementType.SALE, 1)])

    assert db.query(StockMovement).filter(StockMovement.is_reversal.is_(True)).count() == 0


def test_failed_compensation_is_dead_lettered(db, user, make_product):
    pid = make_product(stock=5)
    manager = TransactionManager(db, user)
    steps = [
        Step(name="phantom", run=lambda db: None, undo=lambda result: ReverseMovement(424242)),
        movement_step("take", user, pid, MovementType.SALE, 50),
    ]

    with pytest.raises(TransactionFailed):
        manager.execute_with_rollback(steps, "sale")

    entry = db.query(Log).filter(Log.action == "DEAD_LETTER").one()
    assert entry.status == "FAIL"
    assert entry.resource == "sale"
    assert entry.user_id == user.id
    assert entry.meta["step"] == "phantom"
    assert entry.meta["compensation"] == "ReverseMovement"
    assert entry.meta["target"]["movement_id"] == 424242


def test_reservation_compensation_releases_hold(db, user, make_product):
    pid = make_product(stock=10)
    manager = TransactionManager(db, user)
    steps = [
        Step(
            name="hold",
            run=lambda db: reserve_stock(db, pid, 4, user=user),
            undo=lambda reservation: ReleaseReservation(pid, reservation.reservation_id),
        ),
        movement_step("take", user, pid, MovementType.SALE, 50),
    ]

    with pytest.raises(TransactionFailed):
        manager.execute_with_rollback(steps, "checkout")

    inventory = get_inventory(db, pid)
    assert (inventory.reserved_stock, inventory.available_stock) == (0, 10)
