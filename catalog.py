from flask import current_app
from sqlalchemy import update

from errors import BadRequest, NotFound, OutOfStock
from extensions import db
from models import Product, Restaurant

PRODUCT_FIELDS = (
    "name", "description", "price", "image", "category",
    "is_veg", "is_bestseller", "is_available",
)


def reserve(product_id, qty):
    """Take ``qty`` units of a product out of stock.

    The guard and the decrement run as one conditional UPDATE, so two
    concurrent checkouts cannot both pass the stock check. ``in_stock`` is
    recomputed from the pre-update stock in the same statement.
    """
    result = db.session.execute(
        update(Product)
        .where(
            Product.id == product_id,
            Product.stock >= qty,
            Product.is_available.is_(True),
        )
        .values(
            stock=Product.stock - qty,
            in_stock=(Product.stock - qty) > 0,
            total_orders=Product.total_orders + qty,
        )
        .execution_options(synchronize_session=False)
    )

    product = db.session.get(Product, product_id, populate_existing=True)
    if result.rowcount == 0:
        if product is None:
            raise NotFound(f"Product {product_id} not found")
        if not product.is_available:
            raise OutOfStock(f"{product.name} is currently unavailable")
        raise OutOfStock(
            f"{product.name} is out of stock or insufficient quantity available. "
            f"Available: {product.stock}"
        )

    current_app.logger.info(
        "Reserved %s x product %s, %s left", qty, product.id, product.stock
    )
    return product


def set_stock(product, stock):
    try:
        stock = int(stock)
    except (TypeError, ValueError):
        raise BadRequest("stock must be a whole number")
    if stock < 0:
        raise BadRequest("Stock cannot be negative")
    product.stock = stock
    product.in_stock = stock > 0


# ---------------- OPERATOR CATALOG ---------------- #

def list_products(restaurant_id):
    return (
        Product.query
        .filter_by(restaurant_id=restaurant_id)
        .order_by(Product.created_at.desc(), Product.id.desc())
        .all()
    )


def _apply_fields(product, data):
    for field in PRODUCT_FIELDS:
        if field in data:
            setattr(product, field, data[field])
    if "stock" in data:
        set_stock(product, data["stock"])


def create_product(restaurant_id, data):
    if not data.get("name") or data.get("price") is None:
        raise BadRequest("name and price are required")

    product = Product(restaurant_id=restaurant_id, stock=0, in_stock=False)
    _apply_fields(product, data)
    db.session.add(product)
    db.session.commit()
    return product


def get_restaurant_product(restaurant_id, product_id):
    product = Product.query.filter_by(
        id=product_id,
        restaurant_id=restaurant_id
    ).first()
    if not product:
        raise NotFound("Product not found")
    return product


def update_product(restaurant_id, product_id, data):
    product = get_restaurant_product(restaurant_id, product_id)
    _apply_fields(product, data)
    db.session.commit()
    return product


def delete_product(restaurant_id, product_id):
    product = get_restaurant_product(restaurant_id, product_id)
    db.session.delete(product)
    db.session.commit()


# ---------------- STOREFRONT ---------------- #

def list_restaurants(search=None):
    query = Restaurant.query.filter_by(is_active=True, is_approved=True)
    if search:
        term = f"%{search}%"
        query = query.filter(
            Restaurant.name.ilike(term) | Restaurant.cuisine.ilike(term)
        )
    return query.order_by(Restaurant.rating.desc(), Restaurant.id).all()


def browse_menu(restaurant_id, args):
    """Filter a restaurant's menu with the storefront query parameters."""
    query = Product.query.filter_by(restaurant_id=restaurant_id, is_available=True)

    search = (args.get('search') or '').strip()
    if search:
        term = f"%{search}%"
        query = query.filter(
            Product.name.ilike(term) | Product.category.ilike(term)
        )

    category = args.get('category')
    if category:
        query = query.filter(Product.category == category)

    food_type = args.get('type')
    if food_type == "veg":
        query = query.filter(Product.is_veg.is_(True))
    elif food_type == "nonveg":
        query = query.filter(Product.is_veg.is_(False))

    min_price = args.get('min_price', type=float)
    max_price = args.get('max_price', type=float)
    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)

    sort = args.get('sort', '')
    if sort == 'low':
        query = query.order_by(Product.price.asc())
    elif sort == 'high':
        query = query.order_by(Product.price.desc())
    else:
        query = query.order_by(Product.total_orders.desc(), Product.id)

    return query.all()
