"""Pytest fixtures for testing"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")

import pytest
from typing import Callable, Dict, Generator
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from storefront_payments.api.main import create_app
from storefront_payments.config import RuntimeConfig, resolve_runtime_config
from storefront_payments.infrastructure.database.models import Base, Product, User
from storefront_payments.infrastructure.database.repositories import SettingsRepository
from storefront_payments.infrastructure.database.session import engine_options, get_db
from storefront_payments.infrastructure.security import mint_user_jwt


# Test database (file-backed so concurrent sessions really contend)
TEST_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(TEST_DATABASE_URL, **engine_options(TEST_DATABASE_URL))
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db() -> Generator[Session, None, None]:
    """Create test database and session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def session_factory(db: Session) -> sessionmaker:
    """Factory for independent sessions (one per simulated request)"""
    return TestingSessionLocal


@pytest.fixture
def client(db: Session) -> TestClient:
    """Create FastAPI test client with test database"""
    app = create_app()

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


@pytest.fixture
def config_provider(db: Session) -> Callable[[], RuntimeConfig]:
    """Runtime config resolved from the test settings store"""
    settings_repo = SettingsRepository(db)
    return lambda: resolve_runtime_config(settings_repo.get_value)


@pytest.fixture
def gateway_settings(db: Session) -> None:
    """Merchant credentials present, minimum top-up of 1"""
    settings_repo = SettingsRepository(db)
    settings_repo.set_value("gateway_merchant_id", "merchant-1")
    settings_repo.set_value("gateway_secret", "secret-1")
    settings_repo.set_value("min_topup_amount", "1")
    db.commit()


def _add(db: Session, obj):
    db.add(obj)
    db.commit()
    db.refresh(obj)
    return obj


@pytest.fixture
def buyer(db: Session) -> User:
    return _add(db, User(username="buyer", display_name="Buyer One", role="user", balance=0))


@pytest.fixture
def admin(db: Session) -> User:
    return _add(db, User(username="admin", display_name="Site Admin", role="superadmin", balance=0))


@pytest.fixture
def product(db: Session) -> Product:
    return _add(
        db,
        Product(
            name="Exam answers pack",
            description="Worked solutions",
            price=300,
            image="/uploads/pack.png",
            category="Math",
            delivery_content="https://files.example/pack-v1.zip",
        ),
    )


@pytest.fixture
def auth_headers() -> Callable[[User], Dict[str, str]]:
    """Bearer header for a user, as the identity service would issue it"""

    def make(user: User) -> Dict[str, str]:
        return {"Authorization": f"Bearer {mint_user_jwt(str(user.id))}"}

    return make
