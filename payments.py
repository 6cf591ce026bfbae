"""eSewa and Khalti payment adapters.

eSewa is redirect based: the browser posts a signed form to eSewa and comes
back to one of our callback URLs with a base64 JSON ``data`` parameter.
Khalti is token based: the client widget hands us a token which we confirm
with Khalti's verification endpoint before marking the order paid.
"""
import base64
import binascii
import hashlib
import hmac
import json
import time
from urllib.parse import urlencode

import requests
from flask import current_app

from errors import BadRequest, Forbidden, NotFound, TransportError, VerificationFailed
from extensions import db
from fulfillment import apply_status, hold_refund
from models import Order

SIGNED_FIELD_NAMES = "total_amount,transaction_uuid,product_code"
# payment states a late callback must not overwrite
SETTLED = ("completed", "refund_pending")


def sign(message, secret):
    digest = hmac.new(secret.encode(), message.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def format_amount(value):
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return str(value)


def to_paisa(value):
    return int(round(float(value) * 100))


def _owned_order(user, order_id):
    order = db.session.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    if order.user_id != user.id:
        raise Forbidden()
    return order


def _payable_order(user, order_id):
    order = _owned_order(user, order_id)
    if order.payment_status in SETTLED:
        raise BadRequest("Order is already paid")
    if order.restaurant_status == "rejected":
        raise BadRequest("Order has been cancelled")
    return order


def mark_paid(order, transaction_id):
    """Record a confirmed payment.

    The customer status only moves to ``preparing`` while the kitchen has not
    got past ``accepted``. Money arriving for a rejected order is held for
    refund instead.
    """
    if order.payment_status in SETTLED and order.transaction_id == transaction_id:
        current_app.logger.info(
            "Order %s: repeated payment confirmation %s", order.id, transaction_id
        )
        return

    order.transaction_id = transaction_id
    order.payment_status = "completed"
    if order.restaurant_status == "rejected":
        hold_refund(order)
    elif order.restaurant_status in ("pending", "accepted"):
        apply_status(order, "preparing")


# ---------------- ESEWA ---------------- #

def esewa_initiate(user, order_id):
    order = _payable_order(user, order_id)
    config = current_app.config

    amount = format_amount(order.total)
    transaction_uuid = f"{order.id}-{int(time.time() * 1000)}"
    product_code = config["ESEWA_MERCHANT_ID"]

    message = (
        f"total_amount={amount},"
        f"transaction_uuid={transaction_uuid},"
        f"product_code={product_code}"
    )
    signature = sign(message, config["ESEWA_MERCHANT_SECRET"])

    current_app.logger.info("eSewa payment started for order %s (%s)", order.id, transaction_uuid)
    return {
        "payment_url": config["ESEWA_PAYMENT_URL"],
        "payment_data": {
            "amount": amount,
            "tax_amount": "0",
            "total_amount": amount,
            "transaction_uuid": transaction_uuid,
            "product_code": product_code,
            "product_service_charge": "0",
            "product_delivery_charge": "0",
            "success_url": config["ESEWA_SUCCESS_URL"],
            "failure_url": config["ESEWA_FAILURE_URL"],
            "signed_field_names": SIGNED_FIELD_NAMES,
            "signature": signature,
        },
    }


def decode_callback(data):
    """Decode eSewa's ``data`` query parameter into a dict."""
    try:
        payload = json.loads(base64.b64decode(data).decode("utf-8"))
    except (TypeError, ValueError, binascii.Error) as e:
        raise BadRequest("Malformed payment callback") from e
    if not isinstance(payload, dict) or not payload.get("transaction_uuid"):
        raise BadRequest("Malformed payment callback")
    return payload


def order_id_from(payload):
    try:
        return int(str(payload["transaction_uuid"]).split("-")[0])
    except ValueError as e:
        raise BadRequest("Malformed transaction id") from e


def callback_signature_ok(payload, secret):
    names = payload.get("signed_field_names")
    signature = payload.get("signature")
    if not names or not signature:
        return False
    try:
        message = ",".join(f"{name}={payload[name]}" for name in names.split(","))
    except KeyError:
        return False
    return hmac.compare_digest(sign(message, secret), str(signature))


def _frontend(path, **params):
    url = current_app.config["FRONTEND_URL"].rstrip("/") + path
    if params:
        url += "?" + urlencode(params)
    return url


def esewa_success(data):
    """Handle eSewa's success redirect. Always returns a URL to redirect to."""
    try:
        payload = decode_callback(data)
        if current_app.config["ESEWA_VERIFY_CALLBACK"] and not callback_signature_ok(
            payload, current_app.config["ESEWA_MERCHANT_SECRET"]
        ):
            raise VerificationFailed("eSewa callback signature mismatch")

        order_id = order_id_from(payload)
        transaction_code = payload.get("transaction_code")

        order = db.session.get(Order, order_id)
        if not order:
            raise NotFound(f"eSewa success for unknown order {order_id}")

        mark_paid(order, transaction_code)
        db.session.commit()
        current_app.logger.info("Order %s paid via eSewa (%s)", order.id, transaction_code)
        return _frontend("/payment/success", orderId=order_id, refId=transaction_code)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("eSewa success callback failed")
        return _frontend("/payment/failure")


def esewa_failure(data):
    if not data:
        return _frontend("/payment/failure")
    try:
        payload = decode_callback(data)
        order_id = order_id_from(payload)

        order = db.session.get(Order, order_id)
        # a late failure redirect must not undo a confirmed payment
        if order and order.payment_status not in SETTLED:
            order.payment_status = "failed"
            db.session.commit()
            current_app.logger.info("Order %s: eSewa payment failed", order.id)

        return _frontend("/payment/failure", orderId=order_id)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("eSewa failure callback failed")
        return _frontend("/payment/failure")


# ---------------- KHALTI ---------------- #

def khalti_initiate(user, order_id):
    order = _payable_order(user, order_id)
    return {
        "public_key": current_app.config["KHALTI_PUBLIC_KEY"],
        "amount": to_paisa(order.total),
        "order_id": order.id,
        "product_identity": str(order.id),
        "product_name": "Food Order",
        "product_url": current_app.config["FRONTEND_URL"],
    }


def khalti_verify(user, token, amount, order_id):
    order = _owned_order(user, order_id)
    if not token:
        raise BadRequest("token is required")
    try:
        amount = int(amount)
    except (TypeError, ValueError):
        raise BadRequest("amount must be in paisa")
    if amount != to_paisa(order.total):
        raise VerificationFailed("Amount does not match the order total")

    config = current_app.config
    try:
        response = requests.post(
            f"{config['KHALTI_API_URL'].rstrip('/')}/payment/verify/",
            json={"token": token, "amount": amount},
            headers={"Authorization": f"Key {config['KHALTI_SECRET_KEY']}"},
            timeout=config["KHALTI_TIMEOUT"],
        )
    except requests.RequestException as e:
        current_app.logger.error("Khalti verification for order %s failed: %s", order.id, e)
        raise TransportError() from e

    try:
        body = response.json()
    except ValueError:
        body = {}

    idx = body.get("idx") if isinstance(body, dict) else None
    if not response.ok or not idx:
        current_app.logger.warning(
            "Khalti rejected payment for order %s: %s", order.id, response.status_code
        )
        raise VerificationFailed()

    mark_paid(order, idx)
    db.session.commit()
    current_app.logger.info("Order %s paid via Khalti (%s)", order.id, idx)
    return idx
