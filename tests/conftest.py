from types import SimpleNamespace

import mongomock
import pytest
from fastapi.testclient import TestClient

from auth import create_access_token, hash_password
from config import Settings
from database import USERS, create_document
from main import create_app
from payments import PaymentError


class FakeGateway:
    """Stands in for the payment provider; records calls."""

    def __init__(self):
        self.calls = []
        self.fail = False

    def create_payment_intent(self, amount, currency):
        self.calls.append((amount, currency))
        if self.fail:
            raise PaymentError("card declined")
        return "pi_123_secret_456"


@pytest.fixture
def settings():
    return Settings(jwt_key="test-secret", cors_origins=("http://localhost:3000",))


@pytest.fixture
def db():
    return mongomock.MongoClient()["chitchat_test"]


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def app(settings, db, gateway):
    return create_app(settings, db=db, payment_gateway=gateway)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_user(db, settings):
    """Insert a user directly and hand back its id, token and auth headers."""
    def _make(first_name, last_name, email, role="user", password="secret123"):
        doc = create_document(db, USERS, {
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "password_hash": hash_password(password),
            "image": None,
            "role": role,
            "gender": None,
            "birth_date": None,
        })
        token = create_access_token(doc, settings)
        return SimpleNamespace(id=str(doc["_id"]), doc=doc, token=token, headers={"authorization": token})
    return _make


@pytest.fixture
def alice(make_user):
    return make_user("Alice", "Smith", "alice@example.com")


@pytest.fixture
def bob(make_user):
    return make_user("Bob", "Jones", "bob@example.com")


@pytest.fixture
def admin(make_user):
    return make_user("Root", "Admin", "admin@example.com", role="admin")


@pytest.fixture
def make_post(client):
    def _make(owner, title="Hello world", body="First post body", is_public=True, tags=("travel",)):
        response = client.post("/api/posts/add", headers=owner.headers, json={
            "title": title,
            "body": body,
            "is_public": is_public,
            "tags": [{"name": t} for t in tags],
        })
        assert response.status_code == 200, response.text
        return response.json()["data"]
    return _make
