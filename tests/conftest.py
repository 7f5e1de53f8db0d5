import os
import tempfile

# Settings are read at import time; point the app at SQLite before importing it
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("LOGS_PATH", os.path.join(tempfile.gettempdir(), "pointsmall_test_logs"))

from datetime import timedelta
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from pointsmall.core import Base, build_engine, get_db, transaction, utcnow
from pointsmall.models import Product, ProductStatus, Coupon, CouponStatus, DiscountType
from pointsmall.services import PointsService


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'pointsmall.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def make_product(db):
    def _make(stock=10, points_price=300, status=ProductStatus.ACTIVE, category_id=None, name=None):
        sku = f"SKU-{uuid4().hex[:8]}"
        product = Product(
            sku=sku,
            name=name or f"Product {sku}",
            category_id=category_id,
            images=[f"https://cdn.example.com/{sku}.jpg"],
            specifications={"color": "red"},
            points_price=points_price,
            original_price=points_price / 10,
            stock=stock,
            sales_count=0,
            status=status
        )
        with transaction(db):
            db.add(product)
        return product
    return _make


@pytest.fixture
def fund(db):
    def _fund(user_id, amount):
        with transaction(db):
            PointsService.credit(db, user_id, amount, source="test_topup", description="test funding")
    return _fund


@pytest.fixture
def make_coupon(db):
    def _make(discount_value=50, discount_type=DiscountType.FIXED, **fields):
        now = utcnow()
        values = dict(
            code=f"C-{uuid4().hex[:8]}",
            name="Test coupon",
            status=CouponStatus.ACTIVE,
            discount_type=discount_type,
            discount_value=discount_value,
            min_order_amount=0,
            total_quantity=100,
            remaining_quantity=100,
            claimed_quantity=0,
            used_quantity=0,
            per_user_limit=1,
            valid_from=now - timedelta(days=1),
            valid_until=now + timedelta(days=30),
        )
        values.update(fields)
        coupon = Coupon(**values)
        with transaction(db):
            db.add(coupon)
        return coupon
    return _make


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def client(db):
    from main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
