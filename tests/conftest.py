"""Pytest configuration and fixtures"""
import os
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

# Set test environment variables
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_ANON_KEY", "test_anon_key")
os.environ.setdefault("UPSTASH_REDIS_REST_URL", "https://test.upstash.io")
os.environ.setdefault("UPSTASH_REDIS_REST_TOKEN", "test_token")

from marketcart.cart.session import open_cart_session  # noqa: E402
from marketcart.notices import RecordingNotifier  # noqa: E402
from marketcart.storage.backends import LocalStorage  # noqa: E402


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    """Clock frozen at a fixed instant"""
    return FakeClock(datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def local_storage():
    """Shared profile storage with a 5MB quota"""
    return LocalStorage()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def make_session(local_storage, clock, notifier):
    """Factory for tab sessions over the same profile storage"""
    def _make(tab_id: str, backend=None, signed_in: bool = True):
        backend = backend if backend is not None else local_storage
        session = open_cart_session(backend, tab_id=tab_id, notifier=notifier, clock=clock)
        if signed_in:
            session.gate.sign_in("user-123")
        return session
    return _make


@pytest.fixture
def session(make_session):
    """Authenticated session of a single tab"""
    return make_session("tab-a")


@pytest.fixture
def store(session):
    return session.store


@pytest.fixture
def catering_service():
    """Catering service with rich menu items"""
    return {
        "id": "svc-catering-1",
        "name": "Taco Fiesta",
        "type": "catering",
        "description": "Street tacos for any crowd",
        "price": "25",
        "status": "approved",
        "active": True,
        "vendor_id": "vendor-1",
        "vendorName": "Fiesta Kitchen",
        "image": "https://cdn.example.com/taco.jpg",
        "additional_images": ["https://cdn.example.com/taco-2.jpg"],
        "rating": "4.8",
        "service_details": {
            "catering": {
                "serviceStyles": ["buffet"],
                "menuImage": "https://cdn.example.com/menu.jpg",
                "menuItems": [
                    {
                        "id": "menu-1",
                        "name": "Carnitas Tray",
                        "description": "Slow braised pork",
                        "price": 12.5,
                        "priceType": "per_person",
                        "image": "https://cdn.example.com/carnitas.jpg",
                        "dietaryFlags": ["gluten_free"],
                        "category": "mains",
                    },
                    {
                        "id": "menu-2",
                        "name": "Build Your Own Taco",
                        "price": 18,
                        "priceType": "per_person",
                        "category": "combos",
                        "isCombo": True,
                        "comboCategories": [
                            {
                                "id": "cat-protein",
                                "name": "Proteins",
                                "description": "Pick two",
                                "maxSelections": 2,
                                "selectionBehavior": "quantity",
                                "items": [
                                    {
                                        "id": "protein-1",
                                        "name": "Carne Asada",
                                        "description": "Grilled steak",
                                        "image": "https://cdn.example.com/asada.jpg",
                                        "isPremium": True,
                                        "additionalCharge": 3,
                                    }
                                ],
                            }
                        ],
                    },
                ],
            }
        },
    }


@pytest.fixture
def staff_service():
    """Staff service with duration-priced entries"""
    return {
        "id": "svc-staff-1",
        "name": "Event Servers",
        "type": "staff",
        "price": "35",
        "vendor_id": "vendor-2",
        "vendorName": "Crew Co",
        "service_details": {
            "qualifications": ["food handler"],
            "staffServices": [
                {"id": "server", "name": "Server", "price": 35, "priceType": "per_hour", "minimumHours": 4,
                 "description": "Friendly server"},
                {"id": "bartender", "name": "Bartender", "price": 45, "priceType": "per_hour", "minimumHours": 3},
            ],
        },
    }


@pytest.fixture
def venue_service():
    return {
        "id": "svc-venue-1",
        "name": "Rooftop Hall",
        "type": "venues",
        "price": "1500",
        "service_details": {
            "capacity": {"seated": 120, "standing": 200},
            "amenities": ["wifi", "stage"],
            "venueOptions": [
                {"id": "full-day", "name": "Full Day", "price": 1500, "priceType": "per_day", "image": "x.jpg"},
            ],
        },
    }


@pytest.fixture
def rental_service():
    return {
        "id": "svc-rental-1",
        "name": "Chairs & Tables",
        "type": "party-rentals",
        "price": "5",
        "service_details": {
            "setupRequired": True,
            "rentalItems": [
                {"id": "chair", "name": "Chiavari Chair", "price": 5, "priceType": "per_item",
                 "category": "seating", "description": "Gold chair", "availableQuantity": 300},
            ],
        },
    }


@pytest.fixture
def mock_redis_client():
    """Mock sync Upstash Redis client backed by a dict"""
    data = {}
    client = Mock()
    client.data = data
    client.get.side_effect = lambda key: data.get(key)

    def _set(key, value):
        data[key] = value
        return True

    def _delete(*keys):
        removed = 0
        for key in keys:
            removed += 1 if data.pop(key, None) is not None else 0
        return removed

    client.set.side_effect = _set
    client.delete.side_effect = _delete
    client.keys.side_effect = lambda pattern: [k for k in data if k.startswith(pattern.rstrip("*"))]
    client.xadd.return_value = "1-0"
    return client
