"""
Test configuration and fixtures
"""
import os
import tempfile

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = ""
os.environ.setdefault("LOCAL_STORAGE_PATH", tempfile.mkdtemp(prefix="test-uploads-"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.core.cache import cache
from app.core.config import settings
from app.core.database import Base, get_db
from app.core.rate_limit import reset_rate_limiters
from app.core.security import get_password_hash
from app.models.models import User, Establishment, Professional, Customer, Service
from datetime import datetime, timedelta


# Create an in-memory SQLite database for testing
SQLALCHEMY_TEST_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Local storage in a temp dir, no Redis, fresh rate limit counters"""
    monkeypatch.setattr(settings, "STORAGE_BACKEND", "local")
    monkeypatch.setattr(settings, "LOCAL_STORAGE_PATH", str(tmp_path / "uploads"))
    monkeypatch.setattr(settings, "REDIS_URL", "")
    monkeypatch.setattr(cache, "redis_client", None)
    reset_rate_limiters()
    yield
    reset_rate_limiters()


@pytest.fixture(scope="function")
def db():
    """Create a fresh database for each test"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db):
    """Create a test client with overridden database dependency"""
    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app=app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _create_user(db, email, password="testpassword123", full_name="Test Owner"):
    user = User(
        email=email,
        full_name=full_name,
        hashed_password=get_password_hash(password),
        is_active=1
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _login(client, email, password="testpassword123"):
    response = client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password}
    )
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def test_user(db):
    """Create the establishment owner used by most tests"""
    return _create_user(db, "owner@example.com")


@pytest.fixture
def other_user(db):
    """A second tenant, for isolation checks"""
    return _create_user(db, "other@example.com", full_name="Other Owner")


@pytest.fixture
def auth_headers(client, test_user):
    """Get authorization headers for the owner"""
    return _login(client, test_user.email)


@pytest.fixture
def other_headers(client, other_user):
    return _login(client, other_user.email)


@pytest.fixture
def test_establishment(db, test_user):
    """Create a test establishment open 9-18 with two parallel slots"""
    establishment = Establishment(
        user_id=test_user.id,
        name="Test Barbershop",
        slug="test-barbershop",
        address="Rua Teste, 123",
        city="São Paulo",
        state="SP",
        phone="(11) 3333-4444",
        opening_hour=9,
        closing_hour=18,
        max_concurrent_slots=2,
        status="active"
    )
    db.add(establishment)
    db.commit()
    db.refresh(establishment)
    return establishment


@pytest.fixture
def test_professional(db, test_user, test_establishment):
    professional = Professional(
        user_id=test_user.id,
        establishment_id=test_establishment.id,
        name="João Barbeiro",
        phone="(11) 91234-5678",
        specialties=["Corte", "Barba"],
        status="active"
    )
    db.add(professional)
    db.commit()
    db.refresh(professional)
    return professional


@pytest.fixture
def test_customer(db, test_user, test_establishment):
    """Create a test customer"""
    customer = Customer(
        user_id=test_user.id,
        establishment_id=test_establishment.id,
        name="Pedro Cliente",
        email="pedro@example.com",
        phone="(11) 99876-5432",
        cpf="529.982.247-25",
        status="active"
    )
    db.add(customer)
    db.commit()
    db.refresh(customer)
    return customer


@pytest.fixture
def test_service(db, test_user, test_establishment):
    """Create a 30 minute service priced at 50.00"""
    service = Service(
        user_id=test_user.id,
        establishment_id=test_establishment.id,
        name="Corte Masculino",
        description="Corte com máquina e tesoura",
        duration=30,
        price=5000,
        status="active"
    )
    db.add(service)
    db.commit()
    db.refresh(service)
    return service


@pytest.fixture
def at():
    """Build a naive UTC datetime `days` from today at the given time"""
    def build(hour, minute=0, days=1):
        day = datetime.utcnow().date() + timedelta(days=days)
        return datetime(day.year, day.month, day.day, hour, minute)
    return build
