"""
Error taxonomy for the marketplace core.

Each error carries the HTTP status it is reported with; main.py turns them
into `{"detail": message}` responses.
"""


class ShopError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(ShopError):
    status_code = 404


class Forbidden(ShopError):
    status_code = 403


class InvalidInput(ShopError):
    status_code = 400


class InsufficientStock(ShopError):
    status_code = 400


class SelfTradeForbidden(ShopError):
    status_code = 400


class InternalError(ShopError):
    status_code = 500
