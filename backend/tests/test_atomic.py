import threading
from datetime import timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from database import Base, utcnow
from models.inventory import Inventory, StockReservation
from models.product import Product
from utils.atomic import (
    atomic_array_add, atomic_array_remove, atomic_balance_update, atomic_increment,
    atomic_multi_update, atomic_stock_update, atomic_update
)
from utils.errors import InsufficientStock, NotFoundError, UniquenessConflict, ValidationFailed


def _inv(product_id):
    return [Inventory.product_id == product_id]


def test_stock_update_clamps_at_zero(db, make_product):
    pid = make_product(stock=5)

    row = atomic_stock_update(db, Inventory, _inv(pid), -8)

    assert row.current_stock == 0
    assert row.available_stock == 0


def test_stock_update_clamps_at_min_stock(db, make_product):
    pid = make_product(stock=5)

    row = atomic_stock_update(db, Inventory, _inv(pid), -8, min_stock=2)

    assert row.current_stock == 2


def test_stock_update_reject_mode_leaves_row_untouched(db, make_product):
    pid = make_product(stock=5)
    version = db.query(Inventory.version).filter(Inventory.product_id == pid).scalar()

    with pytest.raises(InsufficientStock) as excinfo:
        atomic_stock_update(db, Inventory, _inv(pid), -6, reject_shortfall=True)

    assert excinfo.value.details["available"] == 5
    assert excinfo.value.details["requested"] == 6
    inventory = db.query(Inventory).filter(Inventory.product_id == pid).populate_existing().one()
    assert inventory.current_stock == 5
    assert inventory.version == version


def test_stock_update_bumps_version_and_recomputes_available(db, make_product):
    pid = make_product(stock=10)
    inventory = db.query(Inventory).filter(Inventory.product_id == pid).one()
    atomic_update(db, Inventory, [Inventory.id == inventory.id], {"reserved_stock": 4})
    before = inventory.version

    row = atomic_stock_update(db, Inventory, _inv(pid), 3)

    assert row.current_stock == 13
    assert row.available_stock == 9
    assert row.version == before + 1


def test_not_found_is_distinct_from_insufficient_stock(db):
    with pytest.raises(NotFoundError) as excinfo:
        atomic_stock_update(db, Inventory, _inv(12345), -1, reject_shortfall=True)
    assert not isinstance(excinfo.value, InsufficientStock)

    with pytest.raises(NotFoundError):
        atomic_increment(db, Inventory, _inv(12345), "stock_value", 1)


def test_validation_errors(db, make_product):
    pid = make_product(stock=1)

    with pytest.raises(ValidationFailed):
        atomic_increment(db, Inventory, _inv(pid), "no_such_column", 1)
    with pytest.raises(ValidationFailed):
        atomic_stock_update(db, Inventory, _inv(pid), "5")
    with pytest.raises(ValidationFailed):
        atomic_multi_update(db, Inventory, _inv(pid))


def test_balance_update_allows_negative_balances(db, make_product):
    pid = make_product(stock=0)

    row = atomic_balance_update(db, Inventory, _inv(pid), -12.5, "stock_value")

    assert row.stock_value == -12.5


def test_multi_update_sets_and_increments_in_one_write(db, make_product):
    pid = make_product(stock=0)

    row = atomic_multi_update(db, Inventory, _inv(pid),
                              set_fields={"reorder_point": 3}, inc_fields={"reorder_quantity": 5})

    assert row.reorder_point == 3
    assert row.reorder_quantity == 55


def test_array_add_and_remove(db, make_product):
    pid = make_product(stock=10)
    inventory_id = db.query(Inventory.id).filter(Inventory.product_id == pid).scalar()
    item = {
        "inventory_id": inventory_id,
        "reservation_id": "RES-1",
        "quantity": 2,
        "expires_at": utcnow() + timedelta(minutes=5),
    }

    added = atomic_array_add(db, StockReservation, item)
    assert added.reservation_id == "RES-1"

    with pytest.raises(UniquenessConflict):
        atomic_array_add(db, StockReservation, item)

    assert atomic_array_remove(db, StockReservation, [StockReservation.reservation_id == "RES-1"]) == 1
    assert atomic_array_remove(db, StockReservation, [StockReservation.reservation_id == "RES-1"]) == 0


def test_concurrent_decrements_never_oversell(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'concurrency.db'}",
                           connect_args={"check_same_thread": False, "timeout": 10})
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = Session()
    product = Product(name="Widget", code="W-1", buy_price=1, sell_price_net=2)
    setup.add(product)
    setup.flush()
    setup.add(Inventory(product_id=product.id, current_stock=3, reserved_stock=0, available_stock=3,
                        stock_value=0, version=0, last_updated=utcnow()))
    setup.commit()
    pid = product.id
    setup.close()

    outcomes = []
    lock = threading.Lock()
    start = threading.Barrier(5)

    def buy_one():
        session = Session()
        try:
            start.wait()
            atomic_stock_update(session, Inventory, _inv(pid), -1, reject_shortfall=True,
                                retry_options={"max_retries": 20, "initial_delay": 0.01, "max_delay": 0.05})
            result = "sold"
        except InsufficientStock:
            result = "rejected"
        finally:
            session.close()
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=buy_one) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    check = Session()
    final = check.query(Inventory.current_stock).filter(Inventory.product_id == pid).scalar()
    check.close()
    engine.dispose()

    assert sorted(outcomes) == ["rejected", "rejected", "sold", "sold", "sold"]
    assert final == 0
