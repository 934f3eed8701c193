"""Shared test fixtures for all test modules."""

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from coupon_board.main import app, get_store
from coupon_board.models import Coupon
from coupon_board.storage import CouponStore, JsonFileStorage, MemoryStorage

# Fixed "current time" used by stores under test
NOW = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

FAR_FUTURE = "2099-12-31T00:00:00.000Z"


def make_coupon(**overrides) -> Coupon:
    fields = {
        "id": "coupon_1",
        "title": "Half price pizza",
        "store": "Pizza Palace",
        "category": "Food & Dining",
        "discountValue": "50",
        "discountType": "percentage",
        "expiryDate": FAR_FUTURE,
        "description": "Half off any large pizza, dine-in only",
        "postedBy": "alice",
        "postedAt": "2026-01-10T09:00:00.000Z",
        "status": "available",
        "rating": 0,
        "ratingCount": 0,
    }
    fields.update(overrides)
    return Coupon(**fields)


@pytest.fixture
def store():
    """In-memory store with a frozen clock."""
    return CouponStore(MemoryStorage(), clock=lambda: NOW)


@pytest.fixture
def json_store(tmp_path):
    """JSON-file store rooted in a temporary directory."""
    return CouponStore(JsonFileStorage(tmp_path / "data"), clock=lambda: NOW)


@pytest.fixture
def client(store):
    """Test client whose routes talk to the in-memory store."""
    app.dependency_overrides[get_store] = lambda: store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
