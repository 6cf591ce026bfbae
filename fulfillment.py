from datetime import datetime, time, timedelta

from flask import current_app
from sqlalchemy import extract, func

from errors import BadRequest, InvalidTransition, NotFound
from extensions import db
from models import Order, OrderItem, OrderStatusHistory, Product, utcnow

RESTAURANT_STATUSES = ("pending", "accepted", "preparing", "ready", "rejected")

ALLOWED_TRANSITIONS = {
    "pending": ("accepted", "preparing", "rejected"),
    "accepted": ("preparing", "ready", "rejected"),
    "preparing": ("ready", "rejected"),
    "ready": (),
    "rejected": (),
}

# what the customer sees once the kitchen moves to a given state
CUSTOMER_STATUS = {
    "accepted": "pending",
    "preparing": "preparing",
    "ready": "delivering",
    "rejected": "cancelled",
}

PROFILE_FIELDS = (
    "name", "description", "cuisine", "phone",
    "street", "city", "area", "delivery_time",
)


def record_status(order, status):
    db.session.add(OrderStatusHistory(order=order, status=status))


def hold_refund(order):
    """Flag a settled online payment for refund once its order is rejected."""
    if order.payment_method != "cash" and order.payment_status == "completed":
        order.payment_status = "refund_pending"
        current_app.logger.warning(
            "Order %s rejected after payment %s; refund pending",
            order.id, order.transaction_id
        )


def apply_status(order, status):
    """Single writer of the customer-facing status."""
    if order.status == status:
        return
    order.status = status
    record_status(order, status)


def transition(order, restaurant_status, rejection_reason=None, preparation_time=None):
    if restaurant_status not in RESTAURANT_STATUSES:
        raise BadRequest(f"Unknown restaurant status: {restaurant_status}")

    current = order.restaurant_status or "pending"
    if restaurant_status != current and restaurant_status not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(
            f"Cannot move order from {current} to {restaurant_status}"
        )

    order.restaurant_status = restaurant_status
    if rejection_reason:
        order.rejection_reason = rejection_reason
    if preparation_time is not None:
        try:
            order.preparation_time = int(preparation_time)
        except (TypeError, ValueError):
            raise BadRequest("preparation_time must be minutes")

    if restaurant_status == "rejected":
        hold_refund(order)

    if restaurant_status in CUSTOMER_STATUS:
        apply_status(order, CUSTOMER_STATUS[restaurant_status])

    current_app.logger.info(
        "Order %s: restaurant status %s -> %s", order.id, current, restaurant_status
    )
    return order


def mark_delivered(order):
    if order.restaurant_status != "ready":
        raise InvalidTransition("Only orders that are ready can be delivered")
    apply_status(order, "delivered")
    return order


# ---------------- RESTAURANT DASHBOARD ---------------- #

def restaurant_orders(restaurant_id, restaurant_status=None):
    query = Order.query.filter_by(restaurant_id=restaurant_id)
    if restaurant_status:
        query = query.filter_by(restaurant_status=restaurant_status)
    return query.order_by(Order.created_at.desc(), Order.id.desc()).all()


def update_order_status(restaurant_id, order_id, data):
    order = Order.query.filter_by(id=order_id, restaurant_id=restaurant_id).first()
    if not order:
        raise NotFound("Order not found")

    transition(
        order,
        data.get("restaurant_status"),
        rejection_reason=data.get("rejection_reason"),
        preparation_time=data.get("preparation_time"),
    )
    db.session.commit()
    return order


def dashboard(restaurant, commission, now=None):
    now = now or utcnow()
    today = datetime.combine(now.date(), time.min)
    tomorrow = today + timedelta(days=1)

    total_products = Product.query.filter_by(restaurant_id=restaurant.id).count()
    today_orders = Order.query.filter(
        Order.restaurant_id == restaurant.id,
        Order.created_at >= today,
        Order.created_at < tomorrow,
    ).count()
    pending_orders = Order.query.filter_by(
        restaurant_id=restaurant.id,
        restaurant_status="pending"
    ).count()
    revenue = db.session.query(func.sum(Order.total)).filter(
        Order.restaurant_id == restaurant.id,
        Order.payment_status == "completed",
    ).scalar() or 0

    return {
        "total_products": total_products,
        "today_orders": today_orders,
        "pending_orders": pending_orders,
        "total_revenue": revenue,
        "restaurant_earnings": round(revenue * (1 - commission / 100), 2),
        "commission": commission,
        "restaurant_info": restaurant.to_dict(),
    }


def analytics(restaurant_id):
    month = extract("month", Order.created_at)
    revenue_by_month = (
        db.session.query(
            month.label("month"),
            func.sum(Order.total).label("revenue"),
            func.count(Order.id).label("orders"),
        )
        .filter(
            Order.restaurant_id == restaurant_id,
            Order.payment_status == "completed",
        )
        .group_by(month)
        .order_by(month)
        .all()
    )

    total_sold = func.sum(OrderItem.quantity)
    top_products = (
        db.session.query(
            OrderItem.product_id,
            OrderItem.product_name,
            total_sold.label("total_sold"),
            func.sum(OrderItem.quantity * OrderItem.price).label("revenue"),
        )
        .join(Order)
        .filter(
            Order.restaurant_id == restaurant_id,
            Order.payment_status == "completed",
        )
        .group_by(OrderItem.product_id, OrderItem.product_name)
        .order_by(total_sold.desc())
        .limit(10)
        .all()
    )

    return {
        "revenue_by_month": [
            {"month": int(row.month), "revenue": row.revenue, "orders": row.orders}
            for row in revenue_by_month
        ],
        "top_products": [
            {
                "product_id": row.product_id,
                "name": row.product_name,
                "total_sold": row.total_sold,
                "revenue": row.revenue,
            }
            for row in top_products
        ],
    }


def update_profile(restaurant, data):
    for field in PROFILE_FIELDS:
        if data.get(field) is not None:
            setattr(restaurant, field, data[field])
    db.session.commit()
    return restaurant
