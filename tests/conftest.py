import os
import time
from typing import Generator

# keep the app's own engine off the filesystem during tests
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy.pool import StaticPool

from storefront import accounts, catalog, schemas
from storefront.auth import Claims, issue_token
from storefront.db import Base, make_engine, make_sessionmaker
from storefront.main import app, get_db
from storefront.models import Role


@pytest.fixture(scope="function")
def db_session() -> Generator:
    # Use in-memory SQLite with a single connection, foreign keys on
    engine = make_engine("sqlite://", poolclass=StaticPool)
    TestingSessionLocal = make_sessionmaker(engine)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture(scope="function")
def client(db_session):
    # Override dependency to use the same session
    def override_get_db():
        try:
            yield db_session
        finally:
            pass
    app.dependency_overrides[get_db] = override_get_db
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    def _make(username="ann", password="password1", role=Role.USER):
        return accounts.create_user(db_session, username, password, role)
    return _make


@pytest.fixture
def category(db_session):
    return catalog.create_category(db_session, schemas.CategoryCreate(name="Protein", description="Powders"))


@pytest.fixture
def make_product(db_session, category):
    def _make(name="Whey", price="19.99", manufacturer="Acme", category_id=None):
        data = schemas.ProductCreate(
            name=name,
            description=f"{name} description",
            category_id=category.id if category_id is None else category_id,
            price=price,
            manufacturer=manufacturer,
        )
        return catalog.create_product(db_session, data)
    return _make


def claims_for(user) -> Claims:
    return Claims(user.id, user.username, user.role, int(time.time()) + 600)


def auth_headers(user) -> dict:
    return {"Authorization": f"Bearer {issue_token(user.id, user.username, user.role)}"}


@pytest.fixture
def file_engine(tmp_path):
    # a real connection pool, so sessions on different threads get their own connections
    engine = make_engine(f"sqlite:///{tmp_path / 'storefront.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()
