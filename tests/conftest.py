from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from pharmapos.db.base import Base
from pharmapos.models import (
    BatchStatus,
    GlobalProduct,
    Pharmacy,
    PharmacyProduct,
    PharmacySettings,
    ProductBatch,
    User,
)
from pharmapos.services.inventory import recalc_product_snapshot
from pharmapos.utils.timezone import today_local


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sent_emails(monkeypatch):
    sent = []

    def fake_send(to_email, template, args):
        sent.append((to_email, template, list(args)))

    monkeypatch.setattr("pharmapos.services.notifications.send_template_email", fake_send)
    return sent


@pytest.fixture
def today():
    return today_local()


@pytest.fixture
def pharmacy(db):
    ph = Pharmacy(name="Farmacia Qendra")
    db.add(ph)
    db.flush()
    db.add(PharmacySettings(pharmacy_id=ph.id, low_stock_threshold=10, expiry_alert_days=30))
    db.commit()
    return ph


@pytest.fixture
def user(db, pharmacy):
    u = User(pharmacy_id=pharmacy.id, username="cashier", email="cashier@example.com", email_verified=True)
    db.add(u)
    db.commit()
    return u


@pytest.fixture
def set_alerts(db, pharmacy):
    def _set(**values):
        row = db.query(PharmacySettings).filter_by(pharmacy_id=pharmacy.id).one()
        for key, val in values.items():
            setattr(row, key, val)
        db.commit()
        return row

    return _set


@pytest.fixture
def make_product(db, pharmacy):
    counter = {"n": 0}

    def _make(barcode=None, name="Paracetamol 500mg", price="2.50", pharmacy_id=None):
        counter["n"] += 1
        barcode = barcode or f"590000000{counter['n']:04d}"
        gp = GlobalProduct(barcode=barcode, name=name)
        db.add(gp)
        db.flush()
        product = PharmacyProduct(
            pharmacy_id=pharmacy_id or pharmacy.id,
            global_product_id=gp.id,
            quantity=Decimal("0"),
            price=Decimal(price),
        )
        db.add(product)
        db.commit()
        return product

    return _make


@pytest.fixture
def make_batch(db):
    def _make(product, qty, expiry=None, status=BatchStatus.ACTIVE):
        batch = ProductBatch(
            pharmacy_id=product.pharmacy_id,
            pharmacy_product_id=product.id,
            quantity=Decimal(str(qty)),
            expiry_date=expiry,
            status=status,
        )
        db.add(batch)
        db.flush()
        recalc_product_snapshot(db, product.pharmacy_id, product.id)
        db.commit()
        return batch

    return _make


@pytest.fixture
def product_x(make_product, make_batch, today):
    """X with B1(qty=10, earlier expiry) and B2(qty=5, later expiry)."""
    product = make_product(barcode="X-001", name="Product X", price="3.00")
    b1 = make_batch(product, 10, today + timedelta(days=60))
    b2 = make_batch(product, 5, today + timedelta(days=90))
    return product, b1, b2


@pytest.fixture
def client(db, pharmacy, user):
    from fastapi.testclient import TestClient

    from pharmapos.api.deps import RequestContext, current_context, get_db
    from pharmapos.main import app

    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[current_context] = lambda: RequestContext(pharmacy_id=pharmacy.id, user_id=user.id)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def bearer_token():
    from jose import jwt

    from pharmapos.core.config import settings

    def _issue(*, user_id, pharmacy_id):
        return jwt.encode({"sub": str(user_id), "pid": pharmacy_id},
                          settings.JWT_SECRET, algorithm=settings.JWT_ALG)

    return _issue
