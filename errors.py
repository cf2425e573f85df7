"""Error kinds raised by the store's domain operations."""


class ShopError(Exception):
    """Base exception for all store errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class NotFound(ShopError):
    """Raised when an entity is absent or inactive."""

    def __init__(self, entity: str, ident=None):
        self.entity = entity
        self.ident = ident
        msg = f"{entity} not found"
        if ident is not None:
            msg = f"{entity} not found: {ident}"
        super().__init__(msg)


class ValidationFailed(ShopError):
    """Raised when input is malformed or a required value is missing."""


class InvalidSize(ValidationFailed):
    """Raised when a product has no size entry with the requested label."""

    def __init__(self, product_name: str, size: str):
        self.product_name = product_name
        self.size = size
        super().__init__(f"Size {size} not available for {product_name}")


class Unauthorized(ShopError):
    """Raised when a credential is missing, invalid or expired."""


class Forbidden(ShopError):
    """Raised when the caller lacks the privilege for an operation."""


class Conflict(ShopError):
    """Raised when an operation clashes with the current state."""


class InvalidCoupon(Conflict):
    def __init__(self, code: str, reason: str = None):
        self.code = code
        msg = f"Invalid coupon code: {code}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class InvalidTransition(Conflict):
    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Order cannot move from {current} to {target}")


class DuplicateReview(Conflict):
    def __init__(self):
        super().__init__("You have already reviewed this product")


class InsufficientStock(ShopError):
    """Raised when a requested quantity exceeds the size's stock count."""

    def __init__(self, product_name: str, size: str, requested: int, available: int):
        self.product_name = product_name
        self.size = size
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_name} ({size}): requested {requested}, available {available}"
        )


class UpstreamFailure(ShopError):
    """Raised when the database or the payment gateway is unreachable."""
