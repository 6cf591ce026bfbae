from datetime import timedelta

from werkzeug.security import generate_password_hash

from app import create_app
from extensions import db
from models import Coupon, Product, Restaurant, User, utcnow

MENU = [
    {"name": "Chicken Momo", "price": 180, "category": "momo", "is_veg": False, "stock": 50},
    {"name": "Veg Momo", "price": 150, "category": "momo", "is_veg": True, "stock": 50},
    {"name": "Thakali Set", "price": 450, "category": "dal-bhat", "is_veg": False, "stock": 20},
    {"name": "Sel Roti", "price": 60, "category": "snacks", "is_veg": True, "stock": 0},
]


def seed():
    restaurant = Restaurant(
        name="Main Restaurant",
        cuisine="Nepali",
        city="Kathmandu",
        rating=4.3,
        delivery_time="30 mins",
        is_approved=True
    )
    db.session.add(restaurant)

    for item in MENU:
        db.session.add(Product(
            restaurant=restaurant,
            in_stock=item["stock"] > 0,
            **item
        ))

    db.session.add_all([
        User(
            username="momo_admin",
            password=generate_password_hash("1234"),
            role="restaurant_admin",
            restaurant=restaurant
        ),
        User(
            username="admin",
            password=generate_password_hash("admin"),
            role="super_admin"
        ),
        User(
            username="customer",
            password=generate_password_hash("1234"),
            role="customer"
        ),
        Coupon(
            code="SAVE10",
            description="10% off, up to NPR 30",
            discount_percent=10,
            max_discount=30,
            min_order_amount=0,
            valid_from=utcnow(),
            valid_to=utcnow() + timedelta(days=30)
        ),
    ])
    db.session.commit()


if __name__ == '__main__':
    app = create_app()
    with app.app_context():
        db.create_all()
        if Restaurant.query.first():
            print("Database already seeded")
        else:
            seed()
            print("Demo data created")
