import os
import tempfile
from decimal import Decimal

# Окружение до импорта приложения: config читает его при импорте
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="wunderkind-uploads-")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from auth import create_token, hash_password
from database import get_db
from main import app
from models import Base, User, Product, LevelSettings, CommissionRate, STATUS_ACTIVE

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autoflush=False, bind=engine)


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(username=None, level=1, balance="0", is_admin=False, status=STATUS_ACTIVE, password="secret123"):
        counter["n"] += 1
        username = username or f"user{counter['n']}"
        user = User(
            username=username,
            email=f"{username}@example.com",
            password=hash_password(password),
            is_admin=is_admin,
            level=level,
            wallet_balance=Decimal(balance),
            status=status,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_product(db):
    def _make(name="Lamp", status=STATUS_ACTIVE, **prices):
        product = Product(name=name, image_path=f"/uploads/products/{name}.png", status=status)
        for level, price in prices.items():
            setattr(product, f"{level}_price", Decimal(str(price)) if price is not None else None)
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make


@pytest.fixture
def set_level(db):
    def _set(level, daily_task_limit=None, total_tasks_required=None, min_withdrawal_balance=None,
             max_withdrawal_amount=None, rate=None):
        db.merge(LevelSettings(
            level=level,
            daily_task_limit=daily_task_limit,
            total_tasks_required=total_tasks_required,
            min_withdrawal_balance=min_withdrawal_balance,
            max_withdrawal_amount=max_withdrawal_amount,
        ))
        if rate is not None:
            db.merge(CommissionRate(level=level, rate=Decimal(str(rate))))
        db.commit()

    return _set


@pytest.fixture
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {create_token(user)}"}

    return _headers
