class OrderError(Exception):
    """Base for errors reported synchronously to the API caller."""

    status_code = 400
    message = "Bad request"

    def __init__(self, message=None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_dict(self):
        return {"message": self.message}


class BadRequest(OrderError):
    pass


class NotFound(OrderError):
    status_code = 404
    message = "Not found"


class Forbidden(OrderError):
    status_code = 403
    message = "Unauthorized"


class OutOfStock(OrderError):
    message = "Product is out of stock"


class MultiRestaurant(OrderError):
    message = "Orders cannot contain items from multiple restaurants"


class CouponUnknown(NotFound):
    message = "Invalid coupon code"


class CouponExpired(OrderError):
    message = "Coupon is expired or inactive"


class CouponBelowMinimum(OrderError):
    message = "Order amount is below the coupon minimum"


class InvalidTransition(OrderError):
    status_code = 409
    message = "Status change not allowed"


class VerificationFailed(OrderError):
    message = "Payment verification failed"


class TransportError(OrderError):
    status_code = 502
    message = "Payment provider unreachable"
