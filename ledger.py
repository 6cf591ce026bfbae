from flask import current_app

import catalog
import coupons
import pricing
from errors import BadRequest, Forbidden, InvalidTransition, MultiRestaurant, NotFound
from extensions import db
from fulfillment import record_status, transition
from models import Address, Order, OrderItem, Product

PAYMENT_METHODS = ("cash", "esewa", "khalti")
INITIAL_STATUSES = ("pending", "draft")
ADDRESS_FIELDS = ("label", "street", "city", "area", "landmark", "phone")


def resolve_address(user, address_id=None, inline=None):
    """Pick the delivery address snapshot for a new order.

    Saved address by id, then an inline payload, then the user's default,
    then the first saved address. ``None`` when the user has none.
    """
    if address_id is not None:
        address = Address.query.filter_by(id=address_id, user_id=user.id).first()
        if not address:
            raise NotFound("Delivery address not found")
        return address.snapshot()

    if inline:
        if not isinstance(inline, dict):
            raise BadRequest("delivery_address must be an object")
        return {field: inline.get(field) for field in ADDRESS_FIELDS}

    addresses = user.addresses
    for address in addresses:
        if address.is_default:
            return address.snapshot()
    if addresses:
        return addresses[0].snapshot()
    return None


def _line_items(items):
    if not items or not isinstance(items, list):
        raise BadRequest("No items in order")

    lines = []
    for item in items:
        if not isinstance(item, dict) or item.get("product_id") is None:
            raise BadRequest("Each item needs a product_id")
        try:
            product_id = int(item["product_id"])
            qty = int(item.get("qty", 1))
        except (TypeError, ValueError):
            raise BadRequest("product_id and qty must be whole numbers")
        if qty < 1:
            raise BadRequest("qty must be at least 1")
        lines.append((product_id, qty))
    return lines


def place_order(user, items, payment_method="cash", address_id=None,
                address=None, coupon_code=None, status=None):
    """Create an order, taking stock and counting the coupon use.

    Everything happens in one transaction: a failure at any step rolls back
    the stock decrements and coupon usage already made for this order.
    """
    payment_method = payment_method or "cash"
    if payment_method not in PAYMENT_METHODS:
        raise BadRequest(f"Unsupported payment method: {payment_method}")
    status = status or "pending"
    if status not in INITIAL_STATUSES:
        raise BadRequest(f"Invalid initial status: {status}")
    if coupon_code is not None and not isinstance(coupon_code, str):
        raise BadRequest("Only one coupon code can be applied per order")

    lines = _line_items(items)

    try:
        delivery_address = resolve_address(user, address_id, address)

        restaurant_id = None
        snapshots = []
        for product_id, qty in lines:
            product = db.session.get(Product, product_id)
            if not product:
                raise NotFound(f"Product {product_id} not found")

            if restaurant_id is not None and product.restaurant_id != restaurant_id:
                raise MultiRestaurant()
            restaurant_id = product.restaurant_id

            product = catalog.reserve(product.id, qty)
            snapshots.append({
                "product": product,
                "qty": qty,
                "price": product.price,
            })

        discount = 0
        if coupon_code:
            subtotal = pricing.subtotal_of(snapshots)
            coupon, discount = coupons.evaluate(coupon_code, subtotal)
            coupon_code = coupon.code

        quote = pricing.price(
            snapshots,
            current_app.config["FREE_DELIVERY_THRESHOLD"],
            current_app.config["DELIVERY_CHARGE"],
            discount,
        )

        order = Order(
            user_id=user.id,
            restaurant_id=restaurant_id,
            subtotal=quote.subtotal,
            delivery_charge=quote.delivery_charge,
            coupon_code=coupon_code or None,
            discount_amount=quote.discount,
            total=quote.total,
            delivery_address=delivery_address,
            status=status,
            restaurant_status="pending",
            payment_method=payment_method,
            payment_status="completed" if payment_method == "cash" else "pending",
        )
        for line in snapshots:
            order.items.append(OrderItem(
                product_id=line["product"].id,
                product_name=line["product"].name,
                quantity=line["qty"],
                price=line["price"],
            ))
        db.session.add(order)
        db.session.flush()
        record_status(order, order.status)

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    current_app.logger.info(
        "Order %s placed by user %s: total %s via %s",
        order.id, user.id, order.total, order.payment_method
    )
    return order


def list_orders(user):
    return (
        Order.query
        .filter(Order.user_id == user.id, Order.status != "draft")
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def get_order(user, order_id):
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    if order.user_id != user.id and user.role != "super_admin":
        raise Forbidden()
    return order


def cancel_order(user, order_id):
    """Customer cancellation, only before the restaurant has picked it up."""
    order = get_order(user, order_id)
    if order.restaurant_status != "pending" or order.status == "cancelled":
        raise InvalidTransition("Order cannot be cancelled now.")

    transition(order, "rejected", rejection_reason="Cancelled by customer")
    db.session.commit()
    current_app.logger.info("Order %s cancelled by user %s", order.id, user.id)
    return order
