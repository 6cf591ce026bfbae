import pytest

import ledger
from conftest import add_address, login
from errors import (
    BadRequest, CouponBelowMinimum, CouponExpired, Forbidden, InvalidTransition,
    MultiRestaurant, NotFound, OutOfStock,
)
from extensions import db
from models import Coupon, Order, Product, User


def customer(world, name="alice"):
    return db.session.get(User, getattr(world, name))


def test_order_without_coupon(ctx, world):
    order = ledger.place_order(customer(world), [{"product_id": world.p1, "qty": 2}])

    assert order.subtotal == 360
    assert order.delivery_charge == 50
    assert order.discount_amount == 0
    assert order.total == 410
    assert order.restaurant_id == world.momo
    assert order.status == "pending"
    assert order.restaurant_status == "pending"
    assert order.payment_method == "cash"
    assert order.payment_status == "completed"
    assert [h.status for h in order.status_history] == ["pending"]


def test_order_with_coupon(ctx, world):
    order = ledger.place_order(
        customer(world), [{"product_id": world.p1, "qty": 2}], coupon_code="save10"
    )

    assert order.coupon_code == "SAVE10"
    assert order.discount_amount == 30
    assert order.total == 380
    assert db.session.get(Coupon, world.coupon).used_count == 1


def test_price_is_snapshotted(ctx, world):
    order = ledger.place_order(customer(world), [{"product_id": world.p1, "qty": 1}])

    db.session.get(Product, world.p1).price = 999
    db.session.commit()

    assert order.items[0].price == 180
    assert order.items[0].product_name == "Chicken Momo"


def test_order_takes_stock(ctx, world):
    ledger.place_order(customer(world), [{"product_id": world.p2, "qty": 2}])

    product = db.session.get(Product, world.p2)
    assert product.stock == 0
    assert product.in_stock is False
    assert product.total_orders == 2


def test_online_payment_starts_pending(ctx, world):
    order = ledger.place_order(
        customer(world), [{"product_id": world.p1, "qty": 1}], payment_method="khalti"
    )

    assert order.payment_status == "pending"


def test_mixed_restaurants_rejected(ctx, world):
    items = [{"product_id": world.p1, "qty": 1}, {"product_id": world.p3, "qty": 1}]

    with pytest.raises(MultiRestaurant):
        ledger.place_order(customer(world), items)

    assert Order.query.count() == 0
    assert db.session.get(Product, world.p1).stock == 10
    assert db.session.get(Product, world.p3).stock == 5


def test_insufficient_stock(ctx, world):
    with pytest.raises(OutOfStock):
        ledger.place_order(customer(world), [{"product_id": world.p2, "qty": 3}])

    assert db.session.get(Product, world.p2).stock == 2
    assert Order.query.count() == 0


def test_second_order_cannot_oversell(ctx, world):
    ledger.place_order(customer(world), [{"product_id": world.p2, "qty": 2}])

    with pytest.raises(OutOfStock):
        ledger.place_order(customer(world, "bob"), [{"product_id": world.p2, "qty": 1}])


def test_coupon_failure_rolls_back_stock(ctx, world):
    coupon = db.session.get(Coupon, world.coupon)
    coupon.min_order_amount = 1000
    db.session.commit()

    with pytest.raises(CouponBelowMinimum):
        ledger.place_order(
            customer(world), [{"product_id": world.p1, "qty": 2}], coupon_code="SAVE10"
        )

    assert db.session.get(Product, world.p1).stock == 10
    assert db.session.get(Product, world.p1).total_orders == 0
    assert Order.query.count() == 0


def test_single_use_coupon(ctx, world):
    coupon = db.session.get(Coupon, world.coupon)
    coupon.usage_limit = 1
    db.session.commit()

    ledger.place_order(customer(world), [{"product_id": world.p1, "qty": 1}], coupon_code="SAVE10")
    with pytest.raises(CouponExpired) as exc:
        ledger.place_order(
            customer(world, "bob"), [{"product_id": world.p1, "qty": 1}], coupon_code="SAVE10"
        )

    assert exc.value.message == "Coupon is expired or inactive"
    assert db.session.get(Coupon, world.coupon).used_count == 1
    assert db.session.get(Product, world.p1).stock == 9


def test_unknown_product(ctx, world):
    with pytest.raises(NotFound):
        ledger.place_order(customer(world), [{"product_id": 4242, "qty": 1}])


@pytest.mark.parametrize("items", [[], None, [{"qty": 1}], [{"product_id": 1, "qty": 0}]])
def test_malformed_items(ctx, world, items):
    with pytest.raises(BadRequest):
        ledger.place_order(customer(world), items)


def test_unsupported_payment_method(ctx, world):
    with pytest.raises(BadRequest):
        ledger.place_order(customer(world), [{"product_id": world.p1}], payment_method="paypal")


def test_address_defaults_to_none(ctx, world):
    order = ledger.place_order(customer(world), [{"product_id": world.p1}])
    assert order.delivery_address is None


def test_address_uses_default_then_first(ctx, world):
    add_address(world.alice, label="Home", street="Baneshwor", city="Kathmandu", phone="98")
    add_address(world.alice, label="Work", street="Lazimpat", city="Kathmandu",
                phone="97", is_default=True)

    order = ledger.place_order(customer(world), [{"product_id": world.p1}])
    assert order.delivery_address["label"] == "Work"

    bob_home = add_address(world.bob, label="Flat", street="Jhamsikhel", city="Lalitpur")
    order = ledger.place_order(customer(world, "bob"), [{"product_id": world.p1}])
    assert order.delivery_address["label"] == bob_home.label


def test_address_by_id_and_inline(ctx, world):
    home = add_address(world.alice, label="Home", street="Baneshwor", city="Kathmandu")

    order = ledger.place_order(customer(world), [{"product_id": world.p1}], address_id=home.id)
    assert order.delivery_address["street"] == "Baneshwor"

    inline = {"label": "Hotel", "street": "Thamel", "city": "Kathmandu", "phone": "01"}
    order = ledger.place_order(customer(world), [{"product_id": world.p1}], address=inline)
    assert order.delivery_address["street"] == "Thamel"

    # the snapshot does not follow later edits
    home.street = "Koteshwor"
    db.session.commit()
    first = db.session.get(Order, 1)
    assert first.delivery_address["street"] == "Baneshwor"


def test_someone_elses_address(ctx, world):
    bobs = add_address(world.bob, label="Flat", street="Jhamsikhel", city="Lalitpur")

    with pytest.raises(NotFound):
        ledger.place_order(customer(world), [{"product_id": world.p1}], address_id=bobs.id)
    assert db.session.get(Product, world.p1).stock == 10


def test_order_visibility(ctx, world):
    order = ledger.place_order(customer(world), [{"product_id": world.p1}])

    assert ledger.get_order(customer(world), order.id) is order
    with pytest.raises(Forbidden):
        ledger.get_order(customer(world, "bob"), order.id)
    assert ledger.get_order(db.session.get(User, world.root), order.id) is order


def test_drafts_hidden_from_history(ctx, world):
    ledger.place_order(customer(world), [{"product_id": world.p1}], status="draft")
    placed = ledger.place_order(customer(world), [{"product_id": world.p1}])

    assert ledger.list_orders(customer(world)) == [placed]


def test_customer_cancel(ctx, world):
    order = ledger.place_order(customer(world), [{"product_id": world.p1, "qty": 2}])

    ledger.cancel_order(customer(world), order.id)

    assert order.status == "cancelled"
    assert order.restaurant_status == "rejected"
    assert db.session.get(Product, world.p1).stock == 8
    with pytest.raises(InvalidTransition):
        ledger.cancel_order(customer(world), order.id)


def test_place_order_endpoint(client, world):
    login(client, "alice")

    response = client.post("/api/orders", json={
        "items": [{"product_id": world.p1, "qty": 2}],
        "payment_method": "cash",
        "coupon_code": "SAVE10",
    })

    assert response.status_code == 201
    order = response.get_json()
    assert order["total"] == 380
    assert order["items"] == [
        {"product_id": world.p1, "product_name": "Chicken Momo", "qty": 2, "price": 180}
    ]

    listed = client.get("/api/orders").get_json()
    assert [o["id"] for o in listed] == [order["id"]]

    status = client.get(f"/api/orders/{order['id']}/status").get_json()
    assert status["status"] == "pending"


def test_place_order_errors_are_reported(client, world):
    login(client, "alice")

    response = client.post("/api/orders", json={
        "items": [{"product_id": world.p1, "qty": 1}, {"product_id": world.p3, "qty": 1}]
    })
    assert response.status_code == 400
    assert response.get_json()["message"] == "Orders cannot contain items from multiple restaurants"

    response = client.post("/api/orders", json={"items": [{"product_id": world.p1}], "coupon_code": ["A", "B"]})
    assert response.status_code == 400


def test_orders_require_login(client, world):
    response = client.post("/api/orders", json={"items": [{"product_id": world.p1}]})

    assert response.status_code == 401


def test_other_customer_cannot_read_order(client, world):
    login(client, "alice")
    order_id = client.post("/api/orders", json={"items": [{"product_id": world.p1}]}).get_json()["id"]
    client.post("/api/auth/logout")

    login(client, "bob")
    assert client.get(f"/api/orders/{order_id}").status_code == 403
