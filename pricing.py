from collections import namedtuple

Quote = namedtuple("Quote", "subtotal delivery_charge discount total")


def subtotal_of(items):
    """Sum of ``price * qty`` over snapshot line items (dicts)."""
    return round(sum(item["price"] * item["qty"] for item in items), 2)


def delivery_charge_for(subtotal, threshold, flat_fee):
    return 0.0 if subtotal >= threshold else float(flat_fee)


def price(items, delivery_threshold, delivery_fee, discount=0):
    subtotal = subtotal_of(items)
    delivery_charge = delivery_charge_for(subtotal, delivery_threshold, delivery_fee)
    # a discount never covers more than the food itself
    discount = round(min(max(discount, 0), subtotal), 2)
    total = round(subtotal + delivery_charge - discount, 2)
    return Quote(subtotal, delivery_charge, discount, total)
