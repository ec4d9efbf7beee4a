"""
Domain errors raised by the order lifecycle services.

Every error carries the HTTP status the API layer answers with, so routers
never translate business-rule failures by hand. The WebSocket gateway
catches the same classes and decides per message whether to answer with an
ERROR frame or stay silent.
"""

from starlette import status


class OrderServiceError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "OrderServiceError"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def to_dict(self) -> dict:
        return {"detail": self.detail, "error": self.code}


class NotFound(OrderServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "NotFound"


class Forbidden(OrderServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "Forbidden"


class InvalidTransition(OrderServiceError):
    code = "InvalidTransition"

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move order from '{current}' to '{target}'")
        self.current = current
        self.target = target


class InvalidState(OrderServiceError):
    code = "InvalidState"


class InsufficientStock(OrderServiceError):
    code = "InsufficientStock"


class ProductUnavailable(OrderServiceError):
    code = "ProductUnavailable"


class ValidationError(OrderServiceError):
    code = "ValidationError"


class StoreUnavailable(OrderServiceError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "StoreUnavailable"
