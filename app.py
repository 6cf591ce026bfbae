from flask import Flask, Blueprint, current_app, redirect, request, abort, jsonify
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash, check_password_hash
from flask_login import (login_user, login_required, logout_user, current_user)
from sqlalchemy import func

import addresses
import catalog
import coupons
import fulfillment
import ledger
import payments
from config import Config
from decorators import admin_required, restaurant_required
from errors import OrderError
from extensions import db, login_manager
from models import User, Order, OrderItem, Restaurant

api = Blueprint('api', __name__)


def body():
    return request.get_json(silent=True) or {}


def as_list(rows):
    return jsonify([row.to_dict() for row in rows])


# ---------------- APP CONFIG ---------------- #

def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    db.init_app(app)
    login_manager.init_app(app)
    app.register_blueprint(api)

    @app.errorhandler(OrderError)
    def handle_order_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"message": e.description}), e.code

    return app

# ---------------- LOGIN ---------------- #

@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"message": "Authentication required"}), 401

# ---------------- AUTH ---------------- #

@api.route('/')
def home():
    return jsonify({"service": "NepEats API", "status": "ok"})


@api.route('/api/auth/register', methods=['POST'])
def register():
    data = body()
    username = (data.get('username') or '').strip()
    if not username or not data.get('password'):
        abort(400, "username and password are required")

    if User.query.filter_by(username=username).first():
        abort(400, "Username already exists. Choose another.")

    role = data.get('role', 'customer')
    if role not in ('customer', 'restaurant_admin'):
        abort(400, "Invalid role")

    user = User(
        username=username,
        password=generate_password_hash(data['password']),
        name=data.get('name'),
        email=data.get('email'),
        role=role
    )
    if role == 'restaurant_admin':
        restaurant = Restaurant(name=data.get('restaurant_name') or username)
        db.session.add(restaurant)
        user.restaurant = restaurant

    db.session.add(user)
    db.session.commit()
    return jsonify(user.to_dict()), 201


@api.route('/api/auth/login', methods=['POST'])
def login():
    data = body()
    user = User.query.filter_by(username=data.get('username')).first()

    if not user or not check_password_hash(user.password, data.get('password') or ''):
        abort(401, "Invalid username or password")

    login_user(user)
    return jsonify(user.to_dict())


@api.route('/api/auth/logout', methods=['POST'])
@login_required
def logout():
    logout_user()
    return jsonify({"message": "Logged out"})


@api.route('/api/auth/me')
@login_required
def me():
    return jsonify(current_user.to_dict())


@api.route('/api/users/profile')
@login_required
def profile():
    total_orders = Order.query.filter_by(
        user_id=current_user.id
    ).count()

    total_spent = db.session.query(
        func.sum(Order.total)
    ).filter(
        Order.user_id == current_user.id,
        Order.payment_status == 'completed'
    ).scalar() or 0

    data = current_user.to_dict()
    data.update(total_orders=total_orders, total_spent=total_spent)
    return jsonify(data)


@api.route('/api/users/profile', methods=['PUT'])
@login_required
def update_profile():
    data = body()

    if data.get('new_password'):
        if not check_password_hash(current_user.password, data.get('old_password') or ''):
            abort(400, "Old password is incorrect")
        current_user.password = generate_password_hash(data['new_password'])

    for field in ('name', 'email'):
        if data.get(field) is not None:
            setattr(current_user, field, str(data[field]).strip())

    db.session.commit()
    return jsonify(current_user.to_dict())

# ---------------- STOREFRONT ---------------- #

@api.route('/api/restaurants')
def restaurants():
    return as_list(catalog.list_restaurants(request.args.get('search', '').strip()))


@api.route('/api/restaurants/<int:restaurant_id>/menu')
def restaurant_menu(restaurant_id):
    restaurant = db.get_or_404(Restaurant, restaurant_id)
    if not restaurant.is_active or not restaurant.is_approved:
        abort(404)

    products = catalog.browse_menu(restaurant.id, request.args)
    return jsonify({
        "restaurant": restaurant.to_dict(),
        "products": [p.to_dict() for p in products]
    })

# ---------------- ADDRESSES ---------------- #

@api.route('/api/addresses')
@login_required
def list_addresses():
    return as_list(addresses.list_addresses(current_user))


@api.route('/api/addresses', methods=['POST'])
@login_required
def add_address():
    return jsonify(addresses.add_address(current_user, body()).to_dict()), 201


@api.route('/api/addresses/<int:address_id>', methods=['PUT'])
@login_required
def update_address(address_id):
    return jsonify(addresses.update_address(current_user, address_id, body()).to_dict())


@api.route('/api/addresses/<int:address_id>', methods=['DELETE'])
@login_required
def delete_address(address_id):
    addresses.delete_address(current_user, address_id)
    return jsonify({"message": "Address deleted successfully"})


@api.route('/api/addresses/<int:address_id>/default', methods=['PUT'])
@login_required
def default_address(address_id):
    return jsonify(addresses.set_default(current_user, address_id).to_dict())

# ---------------- COUPONS ---------------- #

@api.route('/api/coupons')
def active_coupons():
    return jsonify([c.to_dict(public=True) for c in coupons.active_coupons()])


@api.route('/api/coupons/validate', methods=['POST'])
def validate_coupon():
    data = body()
    try:
        order_amount = float(data.get('order_amount', 0))
    except (TypeError, ValueError):
        abort(400, "order_amount must be a number")

    coupon, discount = coupons.quote(data.get('code'), order_amount)
    return jsonify({
        "valid": True,
        "code": coupon.code,
        "discount_percent": coupon.discount_percent,
        "discount_amount": discount,
        "message": "Coupon applied successfully!"
    })


@api.route('/api/coupons/all')
@login_required
@admin_required
def all_coupons():
    return as_list(coupons.all_coupons())


@api.route('/api/coupons', methods=['POST'])
@login_required
@admin_required
def create_coupon():
    return jsonify(coupons.create_coupon(body()).to_dict()), 201


@api.route('/api/coupons/<int:coupon_id>', methods=['PUT'])
@login_required
@admin_required
def update_coupon(coupon_id):
    return jsonify(coupons.update_coupon(coupon_id, body()).to_dict())


@api.route('/api/coupons/<int:coupon_id>', methods=['DELETE'])
@login_required
@admin_required
def delete_coupon(coupon_id):
    coupons.delete_coupon(coupon_id)
    return jsonify({"message": "Coupon deleted"})

# ---------------- ORDERS ---------------- #

@api.route('/api/orders', methods=['POST'])
@login_required
def place_order():
    data = body()
    order = ledger.place_order(
        current_user,
        data.get('items'),
        payment_method=data.get('payment_method'),
        address_id=data.get('delivery_address_id'),
        address=data.get('delivery_address'),
        coupon_code=data.get('coupon_code'),
        status=data.get('status')
    )
    return jsonify(order.to_dict()), 201


@api.route('/api/orders')
@login_required
def orders():
    return as_list(ledger.list_orders(current_user))


@api.route('/api/orders/<int:order_id>')
@login_required
def order_detail(order_id):
    return jsonify(ledger.get_order(current_user, order_id).to_dict())


@api.route('/api/orders/<int:order_id>/status')
@login_required
def order_status(order_id):
    order = ledger.get_order(current_user, order_id)
    return jsonify({
        "success": True,
        "status": order.status,
        "restaurant_status": order.restaurant_status,
        "payment_status": order.payment_status
    })


@api.route('/api/orders/<int:order_id>/cancel', methods=['POST'])
@login_required
def cancel_order(order_id):
    return jsonify(ledger.cancel_order(current_user, order_id).to_dict())

# ---------------- PAYMENTS ---------------- #

@api.route('/api/payments/esewa/initiate', methods=['POST'])
@login_required
def esewa_initiate():
    return jsonify(payments.esewa_initiate(current_user, body().get('order_id')))


@api.route('/api/payments/esewa/success')
def esewa_success():
    return redirect(payments.esewa_success(request.args.get('data')))


@api.route('/api/payments/esewa/failure')
def esewa_failure():
    return redirect(payments.esewa_failure(request.args.get('data')))


@api.route('/api/payments/khalti/initiate', methods=['POST'])
@login_required
def khalti_initiate():
    return jsonify(payments.khalti_initiate(current_user, body().get('order_id')))


@api.route('/api/payments/khalti/verify', methods=['POST'])
@login_required
def khalti_verify():
    data = body()
    idx = payments.khalti_verify(
        current_user,
        data.get('token'),
        data.get('amount'),
        data.get('order_id')
    )
    return jsonify({
        "success": True,
        "message": "Payment verified successfully",
        "transaction_id": idx
    })

# ---------------- RESTAURANT ---------------- #

@api.route('/api/restaurant/dashboard')
@login_required
@restaurant_required
def restaurant_dashboard():
    return jsonify(fulfillment.dashboard(
        current_user.restaurant,
        current_app.config['RESTAURANT_COMMISSION']
    ))


@api.route('/api/restaurant/orders')
@login_required
@restaurant_required
def restaurant_orders():
    return as_list(fulfillment.restaurant_orders(
        current_user.restaurant_id,
        request.args.get('status')
    ))


@api.route('/api/restaurant/orders/<int:order_id>', methods=['PUT'])
@login_required
@restaurant_required
def update_order_status(order_id):
    order = fulfillment.update_order_status(current_user.restaurant_id, order_id, body())
    return jsonify(order.to_dict())


@api.route('/api/restaurant/products')
@login_required
@restaurant_required
def restaurant_products():
    return as_list(catalog.list_products(current_user.restaurant_id))


@api.route('/api/restaurant/products', methods=['POST'])
@login_required
@restaurant_required
def create_product():
    product = catalog.create_product(current_user.restaurant_id, body())
    return jsonify(product.to_dict()), 201


@api.route('/api/restaurant/products/<int:product_id>', methods=['PUT'])
@login_required
@restaurant_required
def update_product(product_id):
    product = catalog.update_product(current_user.restaurant_id, product_id, body())
    return jsonify(product.to_dict())


@api.route('/api/restaurant/products/<int:product_id>', methods=['DELETE'])
@login_required
@restaurant_required
def delete_product(product_id):
    catalog.delete_product(current_user.restaurant_id, product_id)
    return jsonify({"message": "Product deleted"})


@api.route('/api/restaurant/analytics')
@login_required
@restaurant_required
def restaurant_analytics():
    return jsonify(fulfillment.analytics(current_user.restaurant_id))


@api.route('/api/restaurant/profile', methods=['PUT'])
@login_required
@restaurant_required
def restaurant_profile():
    restaurant = fulfillment.update_profile(current_user.restaurant, body())
    return jsonify(restaurant.to_dict())

# ---------------- ADMIN ---------------- #

@api.route('/api/admin/dashboard')
@login_required
@admin_required
def admin_dashboard():
    total_users = User.query.count()
    total_orders = Order.query.count()
    total_revenue = db.session.query(func.sum(Order.total)) \
        .filter(Order.payment_status == 'completed') \
        .scalar() or 0

    top_products = (
        db.session.query(
            OrderItem.product_name,
            func.sum(OrderItem.quantity).label('qty')
        )
        .group_by(OrderItem.product_name)
        .order_by(func.sum(OrderItem.quantity).desc())
        .limit(5)
        .all()
    )

    recent_orders = (
        Order.query
        .order_by(Order.id.desc())
        .limit(5)
        .all()
    )

    return jsonify({
        "total_users": total_users,
        "total_orders": total_orders,
        "total_revenue": total_revenue,
        "top_products": [{"name": name, "qty": qty} for name, qty in top_products],
        "recent_orders": [o.to_dict() for o in recent_orders]
    })


@api.route('/api/admin/restaurants/<int:restaurant_id>/approve', methods=['PUT'])
@login_required
@admin_required
def approve_restaurant(restaurant_id):
    restaurant = db.get_or_404(Restaurant, restaurant_id)
    restaurant.is_approved = bool(body().get('is_approved', True))
    db.session.commit()
    return jsonify(restaurant.to_dict())


@api.route('/api/admin/orders/<int:order_id>/delivered', methods=['POST'])
@login_required
@admin_required
def mark_delivered(order_id):
    order = db.get_or_404(Order, order_id)
    fulfillment.mark_delivered(order)
    db.session.commit()
    return jsonify(order.to_dict())


# ---------------- RUN ---------------- #

if __name__ == '__main__':
    app = create_app()
    with app.app_context():
        db.create_all()
    app.run(debug=True)
