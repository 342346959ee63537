from types import SimpleNamespace

from sqlalchemy import func, select

from auth import create_token
from models import Product, User
from tests.conftest import registration


# ---------------------- Registration & login ----------------------
def test_register_sets_cookie_and_returns_token(client):
    r = client.post("/api/auth/register", json=registration())
    assert r.status_code == 201
    body = r.json()
    assert body["token"]
    assert body["user"]["account_type"] == "user"
    assert "password_hash" not in body["user"]
    assert "token" in r.cookies


def test_register_business_owner_creates_owner_profile(client):
    r = client.post("/api/auth/register", json=registration("business_owner"))
    assert r.status_code == 201
    assert r.json()["user"]["owner_profile"]["is_verified"] is False


def test_register_lists_every_violated_rule(client):
    body = registration(username="ab", email="someone@gmail.com", index_number="12", phone_number="123")
    r = client.post("/api/auth/register", json=body)
    assert r.status_code == 400
    errors = r.json()["errors"]
    assert "Username must be at least 3 characters long" in errors
    assert any("campus email" in e for e in errors)
    assert "Please provide a valid index number (8-10 digits)" in errors
    assert "Please provide a valid phone number" in errors


def test_register_password_confirmation_mismatch(client):
    r = client.post("/api/auth/register", json=registration(confirm_password="different1"))
    assert r.status_code == 400
    assert "Password confirmation does not match" in r.json()["errors"]


def test_register_duplicate_username_inserts_nothing(client, session):
    first = registration()
    assert client.post("/api/auth/register", json=first).status_code == 201

    dup = registration(username=first["username"])
    r = client.post("/api/auth/register", json=dup)

    assert r.status_code == 409
    assert session.scalar(select(func.count(User.id)).where(User.email == dup["email"])) == 0
    assert session.scalar(select(func.count(User.id)).where(User.username == first["username"])) == 1


def test_login_with_username_or_email(client):
    body = registration()
    client.post("/api/auth/register", json=body)
    client.cookies.clear()

    by_name = client.post("/api/auth/login", json={"username": body["username"], "password": "secret123"})
    by_email = client.post("/api/auth/login", json={"username": body["email"], "password": "secret123"})

    assert by_name.status_code == 200
    assert by_email.status_code == 200
    assert by_name.json()["user"]["username"] == body["username"]


def test_login_wrong_password(client, make_user):
    make_user(username="kofi_login")
    r = client.post("/api/auth/login", json={"username": "kofi_login", "password": "wrong1234"})
    assert r.status_code == 401


def test_change_password(client, make_user):
    user = make_user(username="ama_pw")
    r = client.put("/api/auth/change-password", headers=user["headers"], json={
        "current_password": "secret123", "new_password": "newpass99", "confirm_password": "newpass99",
    })
    assert r.status_code == 200
    assert client.post("/api/auth/login", json={"username": "ama_pw", "password": "newpass99"}).status_code == 200

    wrong = client.put("/api/auth/change-password", headers=user["headers"], json={
        "current_password": "secret123", "new_password": "another99", "confirm_password": "another99",
    })
    assert wrong.status_code == 401


# ---------------------- Auth gate ----------------------
def test_missing_token(client):
    r = client.get("/api/auth/me")
    assert r.status_code == 401
    assert r.json()["detail"] == "Access denied. No authentication token provided."


def test_malformed_token(client):
    r = client.get("/api/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json()["detail"] == "Invalid token. Please log in again."


def test_expired_token(client, make_user):
    user = make_user()
    identity = SimpleNamespace(id=user["id"], username="x", account_type="user", is_admin=False)
    token = create_token(identity, expires_minutes=-5)

    r = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

    assert r.status_code == 401
    assert r.json()["detail"] == "Token has expired. Please log in again."


def test_cookie_token_is_accepted(client):
    client.post("/api/auth/register", json=registration(username="cookie_user"))
    r = client.get("/api/auth/me")
    assert r.status_code == 200
    assert r.json()["user"]["username"] == "cookie_user"


def test_logout_clears_cookie(client):
    client.post("/api/auth/register", json=registration())
    assert client.post("/api/auth/logout").status_code == 200
    assert client.get("/api/auth/me").status_code == 401


def test_verify_endpoint(client, make_user):
    user = make_user()
    ok = client.get("/api/auth/verify", headers=user["headers"])
    assert ok.status_code == 200
    assert ok.json()["valid"] is True
    assert ok.json()["user"]["id"] == user["id"]

    bad = client.get("/api/auth/verify", headers={"Authorization": "Bearer junk"})
    assert bad.status_code == 401
    assert bad.json()["valid"] is False


def test_optional_auth_personalises_business_list(client, make_user, make_business):
    owner = make_user("business_owner")
    make_business(owner)

    mine = client.get("/api/businesses", headers=owner["headers"]).json()
    anonymous = client.get("/api/businesses").json()
    garbage = client.get("/api/businesses", headers={"Authorization": "Bearer junk"})

    assert mine[0]["is_owner"] is True
    assert anonymous[0]["is_owner"] is False
    assert garbage.status_code == 200
    assert garbage.json()[0]["is_owner"] is False


# ---------------------- Users ----------------------
def test_profile_patch_ignores_unknown_fields(client, make_user):
    user = make_user()
    r = client.put("/api/auth/profile", headers=user["headers"], json={
        "department": "Mathematics", "username": "hijack", "is_admin": True,
    })
    assert r.status_code == 200
    assert r.json()["user"]["department"] == "Mathematics"
    assert r.json()["user"]["username"] != "hijack"


def test_empty_patch_is_rejected(client, make_user):
    user = make_user()
    r = client.put(f"/api/users/{user['id']}", headers=user["headers"], json={"unknown": 1})
    assert r.status_code == 400


def test_cannot_edit_someone_else(client, make_user):
    alice, bob = make_user(), make_user()
    r = client.put(f"/api/users/{bob['id']}", headers=alice["headers"], json={"department": "Law"})
    assert r.status_code == 403


def test_deleted_user_is_hidden(client, make_user):
    user = make_user()
    assert client.delete(f"/api/users/{user['id']}", headers=user["headers"]).status_code == 200
    assert client.get(f"/api/users/{user['id']}").status_code == 404


def test_upgrade_to_business_owner(client, make_user):
    user = make_user()
    r = client.post("/api/users/me/business-owner", headers=user["headers"])
    assert r.status_code == 201
    token = r.json()["token"]

    created = client.post("/api/businesses", headers={"Authorization": f"Bearer {token}"}, json={
        "name": "Print Hub", "category": "Services", "location": "KSB", "contact_number": "233201234567",
    })
    assert created.status_code == 201
    assert client.post("/api/users/me/business-owner", headers=user["headers"]).status_code == 409


def test_upgrade_refreshes_cookie(client):
    client.post("/api/auth/register", json=registration())
    r = client.post("/api/users/me/business-owner")
    assert r.status_code == 201
    assert r.cookies["token"] == r.json()["token"]

    verified = client.get("/api/auth/verify").json()
    assert verified["user"]["account_type"] == "business_owner"


def test_deleted_account_token_stops_working(client, make_user, make_business, make_product):
    owner, customer = make_user("business_owner"), make_user()
    business = make_business(owner)
    product = make_product(owner, business["id"])
    assert client.delete(f"/api/users/{customer['id']}", headers=customer["headers"]).status_code == 200

    me = client.get("/api/auth/me", headers=customer["headers"])
    order = client.post("/api/orders", headers=customer["headers"], json={
        "business_id": business["id"],
        "items": [{"product_id": product["id"], "quantity": 1}],
        "delivery_address": "Unity Hall",
    })

    assert me.status_code == 401
    assert me.json()["detail"] == "This account is no longer active."
    assert order.status_code == 401


def test_deleted_owner_takes_businesses_down(client, make_user, make_business, make_product):
    owner, customer = make_user("business_owner"), make_user()
    business = make_business(owner)
    product = make_product(owner, business["id"])
    assert client.delete(f"/api/users/{owner['id']}", headers=owner["headers"]).status_code == 200

    assert client.get("/api/businesses").json() == []
    assert client.get(f"/api/businesses/{business['id']}").status_code == 404
    assert client.get(f"/api/products/{product['id']}").status_code == 404
    order = client.post("/api/orders", headers=customer["headers"], json={
        "business_id": business["id"],
        "items": [{"product_id": product["id"], "quantity": 1}],
        "delivery_address": "Unity Hall",
    })
    assert order.status_code == 404
    created = client.post("/api/products", headers=owner["headers"], json={
        "business_id": business["id"], "name": "Ghost", "price": "1.00", "category": "Other",
    })
    assert created.status_code == 401


# ---------------------- Businesses & products ----------------------
def test_plain_user_cannot_create_business(client, make_user):
    user = make_user()
    r = client.post("/api/businesses", headers=user["headers"], json={
        "name": "Nope", "category": "Other", "location": "Hall", "contact_number": "233201234567",
    })
    assert r.status_code == 403


def test_only_owner_can_update_or_delete_business(client, make_user, make_business):
    owner, stranger = make_user("business_owner"), make_user("business_owner")
    business = make_business(owner)
    url = f"/api/businesses/{business['id']}"

    assert client.put(url, headers=stranger["headers"], json={"name": "Mine now"}).status_code == 403
    assert client.delete(url, headers=stranger["headers"]).status_code == 403

    updated = client.put(url, headers=owner["headers"], json={"name": "Los Barbados II", "owner_id": 99})
    assert updated.status_code == 200
    assert updated.json()["name"] == "Los Barbados II"
    assert updated.json()["owner_id"] == business["owner_id"]

    assert client.delete(url, headers=owner["headers"]).status_code == 200
    assert client.get(url).status_code == 404
    assert client.get("/api/businesses").json() == []


def test_missing_business_is_404_for_owner_check(client, make_user):
    owner = make_user("business_owner")
    assert client.put("/api/businesses/999", headers=owner["headers"], json={"name": "x"}).status_code == 404


def test_only_owner_can_manage_products(client, make_user, make_business, make_product):
    owner, stranger = make_user("business_owner"), make_user("business_owner")
    business = make_business(owner)

    denied = client.post("/api/products", headers=stranger["headers"], json={
        "business_id": business["id"], "name": "Fake", "price": "1.00", "category": "Other",
    })
    assert denied.status_code == 403

    product = make_product(owner, business["id"])
    url = f"/api/products/{product['id']}"
    assert client.put(url, headers=stranger["headers"], json={"price": "1.00"}).status_code == 403
    assert client.delete(url, headers=stranger["headers"]).status_code == 403

    updated = client.put(url, headers=owner["headers"], json={"price": "27.50", "business_id": 12345})
    assert updated.status_code == 200
    assert updated.json()["price"] == 27.5
    assert updated.json()["business_id"] == business["id"]

    assert client.delete(url, headers=owner["headers"]).status_code == 200
    assert client.get(url).status_code == 404
    assert client.get(f"/api/businesses/{business['id']}/products").json() == []


def test_business_detail_aggregates(client, make_user, make_business, make_product):
    owner, reviewer = make_user("business_owner"), make_user()
    business = make_business(owner)
    make_product(owner, business["id"])
    for rating in (4, 5):
        r = client.post(f"/api/businesses/{business['id']}/reviews", headers=reviewer["headers"],
                        json={"rating": rating, "comment": "Great"})
        assert r.status_code == 201

    detail = client.get(f"/api/businesses/{business['id']}").json()

    assert detail["product_count"] == 1
    assert detail["review_count"] == 2
    assert detail["average_rating"] == 4.5
    assert len(detail["products"]) == 1
    assert len(detail["reviews"]) == 2


def test_review_rating_range(client, make_user, make_business):
    owner, reviewer = make_user("business_owner"), make_user()
    business = make_business(owner)
    r = client.post(f"/api/businesses/{business['id']}/reviews", headers=reviewer["headers"], json={"rating": 6})
    assert r.status_code == 400


def test_only_author_deletes_review(client, make_user, make_business):
    owner, author = make_user("business_owner"), make_user()
    business = make_business(owner)
    review = client.post(f"/api/businesses/{business['id']}/reviews", headers=author["headers"],
                         json={"rating": 3}).json()

    assert client.delete(f"/api/reviews/{review['id']}", headers=owner["headers"]).status_code == 403
    assert client.delete(f"/api/reviews/{review['id']}", headers=author["headers"]).status_code == 200
    assert client.get(f"/api/businesses/{business['id']}/reviews").json() == []


def test_search_is_case_insensitive_substring(client, make_user, make_business, make_product):
    owner = make_user("business_owner")
    food = make_business(owner)
    make_business(owner, name="Ayeduase Tech", category="Electronics", description="Phone repairs")
    make_product(owner, food["id"], name="Banku with Tilapia")

    assert [b["name"] for b in client.get("/api/businesses", params={"q": "JOLLOF"}).json()] == ["Los Barbados"]
    assert [b["name"] for b in client.get("/api/businesses/search/electr").json()] == ["Ayeduase Tech"]
    assert [p["name"] for p in client.get("/api/products/search/tilapia").json()] == ["Banku with Tilapia"]
    assert client.get("/api/products", params={"q": "pizza"}).json() == []
    assert len(client.get("/api/products/category/Food & Drinks").json()) == 1


def test_categories_are_seeded(client):
    names = [c["name"] for c in client.get("/api/categories").json()]
    assert len(names) == 8
    assert "Food & Drinks" in names


# ---------------------- Orders ----------------------
def _order_body(business, product, quantity, **extra):
    body = {
        "business_id": business["id"],
        "items": [{"product_id": product["id"], "quantity": quantity}],
        "delivery_address": "Unity Hall, Room 204",
        "payment_method": "mobile_money",
    }
    body.update(extra)
    return body


def _stock(session, product_id):
    session.expire_all()
    return session.get(Product, product_id).stock_quantity


def test_order_then_cancel_round_trip(client, session, make_user, make_business, make_product):
    owner, customer = make_user("business_owner"), make_user()
    business = make_business(owner)
    product = make_product(owner, business["id"], stock_quantity=5)

    created = client.post("/api/orders", headers=customer["headers"], json=_order_body(business, product, 3))
    assert created.status_code == 201
    order = created.json()["order"]
    assert order["status"] == "pending"
    assert order["total_amount"] == 75.0
    assert order["items"][0]["unit_price"] == 25.0
    assert _stock(session, product["id"]) == 2

    cancelled = client.put(f"/api/orders/{order['id']}/cancel", headers=customer["headers"],
                           json={"reason": "Ordered by mistake"})
    assert cancelled.status_code == 200
    assert cancelled.json()["order"]["status"] == "cancelled"
    assert _stock(session, product["id"]) == 5

    again = client.put(f"/api/orders/{order['id']}/cancel", headers=customer["headers"], json={"reason": "again"})
    assert again.status_code == 200
    assert again.json()["order"]["status"] == "cancelled"
    assert _stock(session, product["id"]) == 5


def test_get_order_includes_items(client, make_user, make_business, make_product):
    owner, customer, stranger = make_user("business_owner"), make_user(), make_user()
    business = make_business(owner)
    product = make_product(owner, business["id"])
    order = client.post("/api/orders", headers=customer["headers"],
                        json=_order_body(business, product, 1)).json()["order"]

    for who in (customer, owner):
        r = client.get(f"/api/orders/{order['id']}", headers=who["headers"])
        assert r.status_code == 200
        assert r.json()["items"][0]["product_name"] == "Jollof Rice with Chicken"

    assert client.get(f"/api/orders/{order['id']}", headers=stranger["headers"]).status_code == 403
    assert client.get("/api/orders/999", headers=customer["headers"]).status_code == 404


def test_invalid_status_is_400_and_order_unchanged(client, make_user, make_business, make_product):
    owner, customer = make_user("business_owner"), make_user()
    business = make_business(owner)
    product = make_product(owner, business["id"])
    order = client.post("/api/orders", headers=customer["headers"],
                        json=_order_body(business, product, 1)).json()["order"]

    r = client.put(f"/api/orders/{order['id']}/status", headers=owner["headers"], json={"status": "shipped"})

    assert r.status_code == 400
    assert client.get(f"/api/orders/{order['id']}", headers=owner["headers"]).json()["status"] == "pending"


def test_status_update_by_owner_only(client, make_user, make_business, make_product):
    owner, customer = make_user("business_owner"), make_user()
    business = make_business(owner)
    product = make_product(owner, business["id"])
    order = client.post("/api/orders", headers=customer["headers"],
                        json=_order_body(business, product, 1)).json()["order"]
    url = f"/api/orders/{order['id']}/status"

    assert client.put(url, headers=customer["headers"], json={"status": "confirmed"}).status_code == 403
    r = client.put(url, headers=owner["headers"], json={"status": "confirmed"})
    assert r.status_code == 200
    assert r.json()["order"]["status"] == "confirmed"
    assert client.put(url, headers=owner["headers"], json={"status": "pending"}).status_code == 409
    assert client.put("/api/orders/999/status", headers=owner["headers"], json={"status": "ready"}).status_code == 404


def test_order_exceeding_stock_is_409(client, session, make_user, make_business, make_product):
    owner, customer = make_user("business_owner"), make_user()
    business = make_business(owner)
    product = make_product(owner, business["id"], stock_quantity=2)

    r = client.post("/api/orders", headers=customer["headers"], json=_order_body(business, product, 3))

    assert r.status_code == 409
    assert _stock(session, product["id"]) == 2
    assert client.get("/api/orders", headers=customer["headers"]).json() == []


def test_client_total_must_match(client, make_user, make_business, make_product):
    owner, customer = make_user("business_owner"), make_user()
    business = make_business(owner)
    product = make_product(owner, business["id"])

    bad = client.post("/api/orders", headers=customer["headers"],
                      json=_order_body(business, product, 2, total_amount="1.00"))
    good = client.post("/api/orders", headers=customer["headers"],
                       json=_order_body(business, product, 2, total_amount="50.00"))

    assert bad.status_code == 400
    assert good.status_code == 201


def test_order_validation(client, make_user, make_business):
    owner, customer = make_user("business_owner"), make_user()
    business = make_business(owner)

    empty = client.post("/api/orders", headers=customer["headers"], json={
        "business_id": business["id"], "items": [], "delivery_address": "Hall 7",
    })
    zero = client.post("/api/orders", headers=customer["headers"], json={
        "business_id": business["id"], "items": [{"product_id": 1, "quantity": 0}], "delivery_address": "Hall 7",
    })
    assert empty.status_code == 400
    assert zero.status_code == 400


def test_oversized_quantities_are_400(client, session, make_user, make_business, make_product):
    owner, customer = make_user("business_owner"), make_user()
    business = make_business(owner)
    product = make_product(owner, business["id"])

    order = client.post("/api/orders", headers=customer["headers"], json=_order_body(business, product, 10**20))
    stock = client.put(f"/api/products/{product['id']}", headers=owner["headers"],
                       json={"stock_quantity": 10**12})

    assert order.status_code == 400
    assert stock.status_code == 400
    assert _stock(session, product["id"]) == 5


def test_cannot_order_for_someone_else(client, make_user, make_business, make_product):
    owner, customer, other = make_user("business_owner"), make_user(), make_user()
    business = make_business(owner)
    product = make_product(owner, business["id"])
    r = client.post("/api/orders", headers=customer["headers"],
                    json=_order_body(business, product, 1, user_id=other["id"]))
    assert r.status_code == 403


def test_order_listings(client, make_user, make_business, make_product):
    owner, customer = make_user("business_owner"), make_user()
    business = make_business(owner)
    product = make_product(owner, business["id"])
    client.post("/api/orders", headers=customer["headers"], json=_order_body(business, product, 1))

    assert len(client.get("/api/orders", headers=customer["headers"]).json()) == 1
    assert len(client.get(f"/api/orders/user/{customer['id']}", headers=customer["headers"]).json()) == 1
    assert client.get(f"/api/orders/user/{customer['id']}", headers=owner["headers"]).status_code == 403
    assert len(client.get(f"/api/orders/business/{business['id']}", headers=owner["headers"]).json()) == 1
    assert client.get(f"/api/orders/business/{business['id']}", headers=customer["headers"]).status_code == 403


# ---------------------- Admin & misc ----------------------
def test_admin_stats(client, session, make_user, make_business):
    owner, user = make_user("business_owner"), make_user()
    make_business(owner)
    assert client.get("/api/admin/stats", headers=user["headers"]).status_code == 403

    session.get(User, user["id"]).is_admin = True
    session.commit()
    identity = SimpleNamespace(id=user["id"], username="admin", account_type="user", is_admin=True)
    token = create_token(identity)

    r = client.get("/api/admin/stats", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    stats = r.json()
    assert stats["total_users"] == 2
    assert stats["active_businesses"] == 1
    assert stats["orders_by_status"]["pending"] == 0


def test_root_and_database_check(client):
    assert client.get("/").json() == {"message": "Campus Enterprise Hub API"}
    report = client.get("/test").json()
    assert report["database"] == "✅ Connected & Working"
    assert "users" in report["tables"]
