"""
Shared fixtures: an in-memory SQLite database per test, an operator account,
a product factory and a FastAPI TestClient wired to the same database.
"""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base, get_db
import models.users, models.product, models.inventory, models.stock, models.log  # noqa: F401
from models.users import User
from schemas.product import ProductCreate
from services.catalog import create_product
from utils.tokenJWT import create_access_token


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def user(db):
    operator = User(email="warehouse@example.com", role="WAREHOUSE", first_name="Wanda", last_name="Stock")
    db.add(operator)
    db.commit()
    return operator


@pytest.fixture
def admin(db):
    account = User(email="admin@example.com", role="ADMIN")
    db.add(account)
    db.commit()
    return account


@pytest.fixture
def make_product(db, user):
    counter = {"n": 0}

    def _make(stock: float = 0, cost: float = 2.0, reorder_point: float = 10, code: str = None):
        counter["n"] += 1
        payload = ProductCreate(
            name=f"Test product {counter['n']}",
            code=code or f"SKU-{counter['n']:04d}",
            buy_price=cost,
            sell_price_net=cost * 2,
            initial_stock=stock,
            reorder_point=reorder_point,
        )
        product = create_product(db, payload, user)
        return product.id

    return _make


@pytest.fixture
def client(session_factory):
    from main import app, idempotency_store

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    idempotency_store.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()
    idempotency_store.clear()


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token({'sub': user.email})}"}
