import itertools
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import get_db, init_db, make_engine
from main import app
from models import Business, BusinessOwner, Product, User


@pytest.fixture
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def client(session_factory):
    def override_get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


_seq = itertools.count(1)


def registration(account_type="user", **overrides):
    n = next(_seq)
    body = {
        "username": f"student{n}",
        "email": f"student{n}@st.knust.edu.gh",
        "password": "secret123",
        "confirm_password": "secret123",
        "first_name": "Kwame",
        "last_name": "Mensah",
        "index_number": f"{n:010d}",
        "hall_of_residence": "Unity Hall",
        "department": "Computer Science",
        "phone_number": "233257270471",
        "account_type": account_type,
    }
    body.update(overrides)
    return body


@pytest.fixture
def make_user(client):
    """Register through the API; returns id, token and ready-made headers."""
    def _make(account_type="user", **overrides):
        r = client.post("/api/auth/register", json=registration(account_type, **overrides))
        assert r.status_code == 201, r.text
        client.cookies.clear()
        data = r.json()
        return {
            "id": data["user"]["id"],
            "token": data["token"],
            "headers": {"Authorization": f"Bearer {data['token']}"},
        }
    return _make


@pytest.fixture
def make_business(client):
    def _make(owner, **overrides):
        body = {
            "name": "Los Barbados",
            "description": "Homemade jollof delivered to your hostel",
            "category": "Food & Drinks",
            "location": "Unity Hall",
            "contact_number": "233123456789",
        }
        body.update(overrides)
        r = client.post("/api/businesses", json=body, headers=owner["headers"])
        assert r.status_code == 201, r.text
        return r.json()
    return _make


@pytest.fixture
def make_product(client):
    def _make(owner, business_id, **overrides):
        body = {
            "business_id": business_id,
            "name": "Jollof Rice with Chicken",
            "description": "With fried chicken and salad",
            "price": "25.00",
            "category": "Food & Drinks",
            "stock_quantity": 5,
        }
        body.update(overrides)
        r = client.post("/api/products", json=body, headers=owner["headers"])
        assert r.status_code == 201, r.text
        return r.json()
    return _make


@pytest.fixture
def shop(session):
    """A customer, an owner with one business and two products, straight in the store."""
    def _user(username, index, account_type="user"):
        return User(
            username=username, email=f"{username}@knust.edu.gh", password_hash="x",
            first_name="Ama", last_name="Serwaa", index_number=index,
            hall_of_residence="Africa Hall", department="Engineering",
            phone_number="233244556677", account_type=account_type,
        )

    customer = _user("customer", "1000000001")
    owner = _user("owner", "1000000002", "business_owner")
    owner.owner_profile = BusinessOwner()
    business = Business(owner=owner.owner_profile, name="Thrift", category="Fashion",
                        location="Africa Hall", contact_number="233345678901")
    jacket = Product(business=business, name="Denim Jacket", price=Decimal("45.00"),
                     category="Fashion", stock_quantity=5)
    sneakers = Product(business=business, name="Sneakers", price=Decimal("120.00"),
                       category="Fashion", stock_quantity=2)
    session.add_all([customer, owner, business, jacket, sneakers])
    session.commit()
    return {"customer": customer, "owner": owner, "business": business, "jacket": jacket, "sneakers": sneakers}
