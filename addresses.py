from errors import BadRequest, NotFound
from extensions import db
from models import Address

ADDRESS_FIELDS = ("label", "street", "city", "area", "phone")


def _coordinates(data):
    coords = data.get("coordinates") or {}
    if not isinstance(coords, dict):
        raise BadRequest("coordinates must be an object")
    if coords.get("lat") is None or coords.get("lng") is None:
        return None
    try:
        return float(coords["lat"]), float(coords["lng"])
    except (TypeError, ValueError):
        raise BadRequest("coordinates must be numbers")


def _clear_default(user):
    for address in user.addresses:
        address.is_default = False


def get_address(user, address_id):
    address = Address.query.filter_by(id=address_id, user_id=user.id).first()
    if not address:
        raise NotFound("Address not found")
    return address


def list_addresses(user):
    return list(user.addresses)


def add_address(user, data):
    """Add an address. The first one a user saves becomes the default."""
    coords = _coordinates(data)
    if data.get("is_default"):
        _clear_default(user)
    make_default = bool(data.get("is_default")) or not user.addresses

    address = Address(
        label=data.get("label"),
        street=data.get("street"),
        city=data.get("city"),
        area=data.get("area"),
        landmark=data.get("landmark"),
        phone=data.get("phone"),
        is_default=make_default,
    )
    if coords:
        address.lat, address.lng = coords

    user.addresses.append(address)
    db.session.commit()
    return address


def update_address(user, address_id, data):
    address = get_address(user, address_id)
    coords = _coordinates(data)

    if data.get("is_default"):
        _clear_default(user)

    for field in ADDRESS_FIELDS:
        if data.get(field):
            setattr(address, field, data[field])
    if "landmark" in data:
        address.landmark = data["landmark"]
    if "is_default" in data:
        address.is_default = bool(data["is_default"])

    if coords:
        address.lat, address.lng = coords

    db.session.commit()
    return address


def delete_address(user, address_id):
    address = get_address(user, address_id)
    was_default = address.is_default

    user.addresses.remove(address)
    if was_default and user.addresses:
        user.addresses[0].is_default = True

    db.session.commit()


def set_default(user, address_id):
    address = get_address(user, address_id)
    _clear_default(user)
    address.is_default = True
    db.session.commit()
    return address
