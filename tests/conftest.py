import os

# Point the app at a throwaway in-memory database before anything imports slotbook.config
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENABLE_EXPIRY_WORKER"] = "false"
os.environ["LOG_FILE"] = os.devnull

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.orm import sessionmaker

from slotbook.config import ALGORITHM, SECRET_KEY
from slotbook.database import Base, engine, get_db
from slotbook.main import app
from slotbook.models.booking_model import Booking
from slotbook.models.service_model import Service
from slotbook.models.user_model import User
from slotbook.schemas.booking_schema import BookingStatus
from slotbook.services.cancellation_crud import cancellation_crud
from slotbook.utils.timeutils import utcnow

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    cancellation_crud.seed_default_policies(session)
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    return TestClient(app)


def make_token(user: User) -> str:
    claims = {"sub": user.id, "name": user.display_name, "email": user.email, "role": user.role}
    return jwt.encode(claims, SECRET_KEY, algorithm=ALGORITHM)


def auth(user: User) -> dict:
    return {"Authorization": f"Bearer {make_token(user)}"}


def _user(db, name: str, role: str = "user") -> User:
    user = User(id=str(uuid.uuid4()), display_name=name, email=f"{name.lower()}@example.com", role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def provider(db):
    return _user(db, "Hana")


@pytest.fixture
def customer(db):
    return _user(db, "Victor")


@pytest.fixture
def stranger(db):
    return _user(db, "Sam")


@pytest.fixture
def admin(db):
    return _user(db, "Root", role="admin")


@pytest.fixture
def service(db, provider):
    db_service = Service(
        title="Portrait session",
        description="One hour in the studio",
        price=Decimal("100.00"),
        duration_minutes=60,
        owner_id=provider.id,
    )
    db.add(db_service)
    db.commit()
    db.refresh(db_service)
    return db_service


@pytest.fixture
def make_booking(db, service, customer, provider):
    def factory(status: BookingStatus = BookingStatus.pending, starts_in: timedelta = timedelta(days=2),
                total_price: Decimal = Decimal("100.00"), now=None):
        now = now or utcnow()
        booking = Booking(
            service_id=service.id,
            customer_id=customer.id,
            provider_id=provider.id,
            status=BookingStatus(status).value,
            scheduled_at=now + starts_in,
            duration_minutes=60,
            total_price=total_price,
            service_fee=Decimal("10.00"),
        )
        if status in (BookingStatus.confirmed, BookingStatus.in_progress, BookingStatus.completed):
            booking.confirmed_at = now
        if status == BookingStatus.completed:
            booking.completed_at = now
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking

    return factory
