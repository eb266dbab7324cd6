import os

# Settings are read at import time; point them at throwaway values first.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENV", "dev")
os.environ.setdefault("JWT_SECRET", "test-secret")

import itertools
from contextlib import suppress
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from foodlink.core.db import Base, sqlite_connect_args
from foodlink.core.deps import get_db
from foodlink.core.security import create_access_token
from foodlink.domains.identity.models import User
from foodlink.domains.surplus.models import FoodCategory
from foodlink.domains.surplus.service import create_surplus
from foodlink.main import app

_phones = itertools.count(9000000000)


@pytest.fixture
def session_factory(tmp_path):
    # File-backed SQLite so separate sessions really are separate connections.
    url = f"sqlite:///{tmp_path / 'test.db'}"
    engine = create_engine(url, connect_args=sqlite_connect_args(url))
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    try:
        yield factory
    finally:
        with suppress(Exception):
            engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(session_factory):
    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(name: str, user_type: str) -> User:
        user = User(phone=str(next(_phones)), name=name, user_type=user_type)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


def auth_headers(user: User) -> dict:
    token = create_access_token(sub=user.id, role=user.role, name=user.display_name)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def new_surplus(db, now):
    def _new(canteen_id: str = "C1", *, quantity: float = 12.5, at: datetime | None = None, shelf_hours: float = 6):
        created = at or now
        return create_surplus(
            db,
            canteen_id=canteen_id,
            canteen_name="Main Canteen",
            food_name="Veg biryani",
            category=FoodCategory.VEGETARIAN,
            quantity=quantity,
            unit="kg",
            pickup_location="Block A kitchen",
            expiry_time=created + timedelta(hours=shelf_hours),
            now=created,
        )

    return _new
