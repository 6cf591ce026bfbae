from datetime import timedelta
from types import SimpleNamespace

import pytest
from werkzeug.security import generate_password_hash

from app import create_app
from config import TestConfig
from extensions import db
from models import Address, Coupon, Product, Restaurant, User, utcnow

PASSWORD = "secret"


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def ctx(app):
    """Application context for tests that call the service modules directly."""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


def make_user(username, role="customer", restaurant=None):
    user = User(
        username=username,
        password=generate_password_hash(PASSWORD),
        role=role,
        restaurant=restaurant
    )
    db.session.add(user)
    return user


@pytest.fixture
def world(app):
    """Two approved restaurants, a small menu, users of every role, SAVE10."""
    with app.app_context():
        momo = Restaurant(name="Momo House", cuisine="Nepali", is_approved=True)
        pizza = Restaurant(name="Pizza Hut", cuisine="Italian", is_approved=True)
        db.session.add_all([momo, pizza])

        p1 = Product(name="Chicken Momo", price=180, stock=10, in_stock=True,
                     category="momo", is_veg=False, restaurant=momo)
        p2 = Product(name="Veg Momo", price=100, stock=2, in_stock=True,
                     category="momo", is_veg=True, restaurant=momo)
        p3 = Product(name="Margherita", price=600, stock=5, in_stock=True,
                     category="pizza", is_veg=True, restaurant=pizza)
        hidden = Product(name="Seasonal Soup", price=90, stock=5, in_stock=True,
                         is_available=False, restaurant=momo)
        db.session.add_all([p1, p2, p3, hidden])

        alice = make_user("alice")
        bob = make_user("bob")
        chef = make_user("chef", role="restaurant_admin", restaurant=momo)
        chef_pizza = make_user("pizzaiolo", role="restaurant_admin", restaurant=pizza)
        root = make_user("root", role="super_admin")

        coupon = Coupon(
            code="save10",
            description="10% off",
            discount_percent=10,
            max_discount=30,
            min_order_amount=0,
            valid_from=utcnow() - timedelta(days=1),
            valid_to=utcnow() + timedelta(days=30),
        )
        db.session.add(coupon)
        db.session.commit()

        return SimpleNamespace(
            momo=momo.id, pizza=pizza.id,
            p1=p1.id, p2=p2.id, p3=p3.id, hidden=hidden.id,
            alice=alice.id, bob=bob.id, chef=chef.id,
            chef_pizza=chef_pizza.id, root=root.id,
            coupon=coupon.id,
        )


def login(client, username, password=PASSWORD):
    response = client.post(
        "/api/auth/login",
        json={"username": username, "password": password}
    )
    assert response.status_code == 200, response.get_json()
    return response


def add_address(user_id, **fields):
    address = Address(user_id=user_id, **fields)
    db.session.add(address)
    db.session.commit()
    return address
