from conftest import login
from extensions import db
from models import Restaurant, User


def test_register_and_login(client, world):
    response = client.post("/api/auth/register", json={
        "username": "sita", "password": "pw", "name": "Sita"
    })
    assert response.status_code == 201
    assert response.get_json()["role"] == "customer"

    login(client, "sita", "pw")
    assert client.get("/api/auth/me").get_json()["username"] == "sita"


def test_duplicate_username(client, world):
    response = client.post("/api/auth/register", json={"username": "alice", "password": "pw"})

    assert response.status_code == 400
    assert "already exists" in response.get_json()["message"]


def test_restaurant_signup_waits_for_approval(client, app, world):
    response = client.post("/api/auth/register", json={
        "username": "thakali", "password": "pw",
        "role": "restaurant_admin", "restaurant_name": "Thakali Kitchen"
    })
    assert response.status_code == 201

    with app.app_context():
        user = User.query.filter_by(username="thakali").first()
        restaurant = db.session.get(Restaurant, user.restaurant_id)
        assert restaurant.name == "Thakali Kitchen"
        assert restaurant.is_approved is False
        restaurant_id = restaurant.id

    names = [r["name"] for r in client.get("/api/restaurants").get_json()]
    assert "Thakali Kitchen" not in names

    login(client, "root")
    response = client.put(f"/api/admin/restaurants/{restaurant_id}/approve", json={})
    assert response.get_json()["is_approved"] is True


def test_cannot_register_as_admin(client, world):
    response = client.post("/api/auth/register", json={
        "username": "mallory", "password": "pw", "role": "super_admin"
    })

    assert response.status_code == 400


def test_wrong_password(client, world):
    response = client.post("/api/auth/login", json={"username": "alice", "password": "nope"})

    assert response.status_code == 401


def test_logout(client, world):
    login(client, "alice")
    client.post("/api/auth/logout")

    assert client.get("/api/auth/me").status_code == 401


def test_profile_shows_order_totals(client, world):
    login(client, "alice")
    client.post("/api/orders", json={"items": [{"product_id": world.p1, "qty": 2}]})

    profile = client.get("/api/users/profile").get_json()

    assert profile["username"] == "alice"
    assert profile["total_orders"] == 1
    assert profile["total_spent"] == 410


def test_update_profile(client, world):
    login(client, "alice")

    response = client.put("/api/users/profile", json={
        "name": "Alice Shrestha", "email": " alice@example.com "
    })

    assert response.status_code == 200
    assert response.get_json()["name"] == "Alice Shrestha"
    assert client.get("/api/auth/me").get_json()["email"] == "alice@example.com"


def test_change_password_needs_old_one(client, world):
    login(client, "alice")

    response = client.put("/api/users/profile", json={
        "old_password": "wrong", "new_password": "n3w", "name": "Ignored"
    })
    assert response.status_code == 400
    assert response.get_json()["message"] == "Old password is incorrect"

    response = client.put("/api/users/profile", json={
        "old_password": "secret", "new_password": "n3w"
    })
    assert response.status_code == 200

    client.post("/api/auth/logout")
    assert client.post("/api/auth/login", json={"username": "alice", "password": "secret"}).status_code == 401
    login(client, "alice", "n3w")
    assert client.get("/api/auth/me").get_json()["name"] != "Ignored"
