from datetime import datetime, timezone

from extensions import db
from flask_login import UserMixin
from sqlalchemy.orm import validates


def utcnow():
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso(value):
    return value.isoformat() if value else None


class User(db.Model, UserMixin):
    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(100), unique=True, nullable=False)
    password = db.Column(db.String(200), nullable=False)
    name = db.Column(db.String(100))
    email = db.Column(db.String(120))

    role = db.Column(db.String(20), default="customer")
    # customer | restaurant_admin | super_admin

    restaurant_id = db.Column(db.Integer, db.ForeignKey('restaurant.id'))
    restaurant = db.relationship('Restaurant', foreign_keys=[restaurant_id])

    created_at = db.Column(db.DateTime, default=utcnow)

    addresses = db.relationship(
        'Address',
        backref='user',
        order_by='Address.id',
        cascade='all, delete-orphan'
    )

    def to_dict(self):
        return {
            "id": self.id,
            "username": self.username,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "restaurant_id": self.restaurant_id,
        }


class Address(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)

    label = db.Column(db.String(50))
    street = db.Column(db.String(200))
    city = db.Column(db.String(100))
    area = db.Column(db.String(100))
    landmark = db.Column(db.String(200))
    phone = db.Column(db.String(20))
    is_default = db.Column(db.Boolean, default=False, nullable=False)

    lat = db.Column(db.Float)
    lng = db.Column(db.Float)

    def coordinates(self):
        if self.lat is None or self.lng is None:
            return None
        return {"lat": self.lat, "lng": self.lng}

    def snapshot(self):
        """Copy frozen into an order at checkout."""
        return {
            "label": self.label,
            "street": self.street,
            "city": self.city,
            "area": self.area,
            "landmark": self.landmark,
            "phone": self.phone,
        }

    def to_dict(self):
        data = self.snapshot()
        data.update({
            "id": self.id,
            "is_default": self.is_default,
            "coordinates": self.coordinates(),
        })
        return data


class Restaurant(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, default="")
    cuisine = db.Column(db.String(100), default="")
    phone = db.Column(db.String(20), default="")
    street = db.Column(db.String(200), default="")
    city = db.Column(db.String(100), default="")
    area = db.Column(db.String(100), default="")
    rating = db.Column(db.Float, default=4.0)
    delivery_time = db.Column(db.String(20), default="30 mins")

    is_active = db.Column(db.Boolean, default=True)
    is_approved = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    products = db.relationship('Product', backref='restaurant', lazy=True)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "cuisine": self.cuisine,
            "phone": self.phone,
            "address": {"street": self.street, "city": self.city, "area": self.area},
            "rating": self.rating,
            "delivery_time": self.delivery_time,
            "is_active": self.is_active,
            "is_approved": self.is_approved,
        }


class Product(db.Model):
    __table_args__ = (
        db.CheckConstraint('stock >= 0', name='ck_product_stock_nonnegative'),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, default="")
    price = db.Column(db.Float, nullable=False)
    image = db.Column(db.String(255))
    category = db.Column(db.String(50))

    is_veg = db.Column(db.Boolean, default=True)
    is_bestseller = db.Column(db.Boolean, default=False)

    stock = db.Column(db.Integer, default=0, nullable=False)
    # kept equal to stock > 0 by every mutator
    in_stock = db.Column(db.Boolean, default=False, nullable=False)
    is_available = db.Column(db.Boolean, default=True, nullable=False)
    total_orders = db.Column(db.Integer, default=0, nullable=False)

    restaurant_id = db.Column(db.Integer, db.ForeignKey('restaurant.id'), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "restaurant_id": self.restaurant_id,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "image": self.image,
            "category": self.category,
            "is_veg": self.is_veg,
            "is_bestseller": self.is_bestseller,
            "stock": self.stock,
            "in_stock": self.in_stock,
            "is_available": self.is_available,
            "total_orders": self.total_orders,
        }


class Coupon(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(20), unique=True, nullable=False)
    description = db.Column(db.String(200), default="")
    discount_percent = db.Column(db.Float, nullable=False)
    max_discount = db.Column(db.Float)  # None means uncapped
    min_order_amount = db.Column(db.Float, default=0, nullable=False)
    valid_from = db.Column(db.DateTime, default=utcnow, nullable=False)
    valid_to = db.Column(db.DateTime, nullable=False)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    usage_limit = db.Column(db.Integer)  # None means unlimited
    used_count = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)

    @validates('code')
    def normalize_code(self, key, value):
        return value.strip().upper()

    @validates('discount_percent')
    def check_percent(self, key, value):
        if value is None or not 0 <= float(value) <= 100:
            raise ValueError("discount_percent must be between 0 and 100")
        return value

    def to_dict(self, public=False):
        data = {
            "id": self.id,
            "code": self.code,
            "description": self.description,
            "discount_percent": self.discount_percent,
            "max_discount": self.max_discount,
            "min_order_amount": self.min_order_amount,
            "valid_from": iso(self.valid_from),
            "valid_to": iso(self.valid_to),
            "is_active": self.is_active,
        }
        if not public:
            data["usage_limit"] = self.usage_limit
            data["used_count"] = self.used_count
        return data


class Order(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    restaurant_id = db.Column(db.Integer, db.ForeignKey('restaurant.id'))

    subtotal = db.Column(db.Float, nullable=False)
    delivery_charge = db.Column(db.Float, default=0, nullable=False)
    coupon_code = db.Column(db.String(20))
    discount_amount = db.Column(db.Float, default=0, nullable=False)
    total = db.Column(db.Float, nullable=False)

    delivery_address = db.Column(db.JSON)

    status = db.Column(db.String(20), default="pending")
    # pending | preparing | delivering | delivered | cancelled

    restaurant_status = db.Column(db.String(20), default="pending")
    # pending | accepted | preparing | ready | rejected

    payment_method = db.Column(db.String(20), default="cash")
    payment_status = db.Column(db.String(20), default="pending")
    # pending | completed | failed | refund_pending
    transaction_id = db.Column(db.String(100))

    rejection_reason = db.Column(db.Text)
    preparation_time = db.Column(db.Integer)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    user = db.relationship('User', backref=db.backref('orders', order_by='Order.id'))
    restaurant = db.relationship('Restaurant')
    items = db.relationship('OrderItem', backref='order', cascade='all, delete-orphan')

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "restaurant_id": self.restaurant_id,
            "items": [item.to_dict() for item in self.items],
            "subtotal": self.subtotal,
            "delivery_charge": self.delivery_charge,
            "coupon_code": self.coupon_code,
            "discount_amount": self.discount_amount,
            "total": self.total,
            "delivery_address": self.delivery_address,
            "status": self.status,
            "restaurant_status": self.restaurant_status,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "transaction_id": self.transaction_id,
            "rejection_reason": self.rejection_reason,
            "preparation_time": self.preparation_time,
            "created_at": iso(self.created_at),
            "history": [h.to_dict() for h in self.status_history],
        }


class OrderItem(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('order.id'), nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'))

    product_name = db.Column(db.String(100))
    quantity = db.Column(db.Integer, nullable=False)
    price = db.Column(db.Float, nullable=False)

    def to_dict(self):
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "qty": self.quantity,
            "price": self.price,
        }


class OrderStatusHistory(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('order.id'))
    status = db.Column(db.String(20))
    changed_at = db.Column(db.DateTime, default=utcnow)

    order = db.relationship(
        'Order',
        backref=db.backref('status_history', order_by='OrderStatusHistory.id')
    )

    def to_dict(self):
        return {"status": self.status, "changed_at": iso(self.changed_at)}
