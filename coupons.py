from datetime import datetime, timezone

from flask import current_app
from sqlalchemy import or_, update

from errors import BadRequest, CouponBelowMinimum, CouponExpired, CouponUnknown, NotFound
from extensions import db
from models import Coupon, utcnow

EDITABLE_FIELDS = (
    "description", "discount_percent", "max_discount", "min_order_amount",
    "valid_from", "valid_to", "is_active", "usage_limit",
)


def is_valid(coupon, now=None):
    """Active, inside its window (both ends inclusive) and not used up."""
    now = now or utcnow()
    return (
        coupon.is_active
        and coupon.valid_from <= now <= coupon.valid_to
        and (coupon.usage_limit is None or coupon.used_count < coupon.usage_limit)
    )


def discount_for(coupon, order_amount):
    discount = order_amount * coupon.discount_percent / 100
    if coupon.max_discount is not None and discount > coupon.max_discount:
        discount = coupon.max_discount
    return round(discount, 2)


def find(code):
    if not isinstance(code, str) or not code.strip():
        raise CouponUnknown()
    coupon = Coupon.query.filter_by(code=code.strip().upper()).first()
    if not coupon:
        raise CouponUnknown()
    return coupon


def _check(coupon, order_amount, now):
    if not is_valid(coupon, now):
        raise CouponExpired()
    if order_amount < coupon.min_order_amount:
        raise CouponBelowMinimum(
            f"Minimum order amount of NPR {coupon.min_order_amount:g} required for this coupon"
        )


def quote(code, order_amount, now=None):
    """Validate a code against an order amount without using it up."""
    coupon = find(code)
    _check(coupon, order_amount, now or utcnow())
    return coupon, discount_for(coupon, order_amount)


def evaluate(code, order_amount, now=None):
    """Validate a code and count one use of it.

    Returns ``(coupon, discount_amount)``. The usage increment is guarded in
    the UPDATE itself so ``used_count`` never passes ``usage_limit`` even
    when two checkouts race for the last use.
    """
    coupon, discount = quote(code, order_amount, now)

    result = db.session.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            or_(Coupon.usage_limit.is_(None), Coupon.used_count < Coupon.usage_limit),
        )
        .values(used_count=Coupon.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise CouponExpired("Coupon usage limit reached")

    db.session.refresh(coupon)
    current_app.logger.info(
        "Coupon %s redeemed (%s/%s)", coupon.code, coupon.used_count, coupon.usage_limit
    )
    return coupon, discount


# ---------------- ADMIN ---------------- #

def _parse_datetime(value):
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        raise BadRequest(f"Invalid date: {value}")
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _apply(coupon, data):
    for field in EDITABLE_FIELDS:
        if field not in data:
            continue
        value = data[field]
        if field in ("valid_from", "valid_to"):
            if value is None:
                raise BadRequest(f"{field} cannot be empty")
            value = _parse_datetime(value)
        try:
            setattr(coupon, field, value)
        except ValueError as e:
            raise BadRequest(str(e))


def active_coupons(now=None):
    now = now or utcnow()
    return (
        Coupon.query
        .filter(
            Coupon.is_active.is_(True),
            Coupon.valid_from <= now,
            Coupon.valid_to >= now,
        )
        .order_by(Coupon.created_at.desc())
        .all()
    )


def all_coupons():
    return Coupon.query.order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()


def create_coupon(data):
    code = data.get("code")
    if not code or data.get("discount_percent") is None or not data.get("valid_to"):
        raise BadRequest("code, discount_percent and valid_to are required")

    if Coupon.query.filter_by(code=code.strip().upper()).first():
        raise BadRequest("Coupon code already exists")

    coupon = Coupon(code=code, used_count=0)
    _apply(coupon, data)
    if coupon.valid_from is None:
        coupon.valid_from = utcnow()
    db.session.add(coupon)
    db.session.commit()
    current_app.logger.info("Coupon %s created", coupon.code)
    return coupon


def update_coupon(coupon_id, data):
    coupon = db.session.get(Coupon, coupon_id)
    if not coupon:
        raise NotFound("Coupon not found")
    _apply(coupon, data)
    db.session.commit()
    return coupon


def delete_coupon(coupon_id):
    coupon = db.session.get(Coupon, coupon_id)
    if not coupon:
        raise NotFound("Coupon not found")
    db.session.delete(coupon)
    db.session.commit()
