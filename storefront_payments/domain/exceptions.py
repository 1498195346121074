"""Domain-specific exceptions"""

from typing import Optional


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class AmountMismatchError(DomainException):
    """Submitted amount differs from the product's current price"""

    def __init__(self, submitted: int, price: int):
        super().__init__(f"Amount {submitted} does not match product price {price}")
        self.submitted = submitted
        self.price = price


class BelowMinimumError(DomainException):
    """Top-up amount is below the configured minimum"""

    def __init__(self, submitted: int, minimum: int):
        super().__init__(f"Minimum top-up amount is {minimum}")
        self.submitted = submitted
        self.minimum = minimum


class ProductNotFoundError(DomainException):
    """Referenced product does not exist"""

    pass


class GatewayNotConfiguredError(DomainException):
    """Merchant credentials for the payment gateway are missing"""

    pass


class GatewayError(DomainException):
    """Payment gateway returned an error or is unavailable"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
