# backend/utils/errors.py
from typing import Optional


# Base class for all inventory domain errors. Carries the HTTP status and
# machine readable code used by the API exception handler.
class InventoryError(Exception):
    status_code = 400
    code = "INVENTORY_ERROR"

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"success": False, "message": self.message, "code": self.code}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(InventoryError):
    status_code = 404
    code = "NOT_FOUND"


class ProductNotFound(NotFoundError):
    def __init__(self, product_id):
        super().__init__("Product not found", product_id=product_id)


class InventoryNotFound(NotFoundError):
    def __init__(self, product_id):
        super().__init__("Inventory record not found", product_id=product_id)


class MovementNotFound(NotFoundError):
    def __init__(self, movement_id):
        super().__init__("Stock movement not found", movement_id=movement_id)


class ReservationNotFound(NotFoundError):
    def __init__(self, reservation_id: str):
        super().__init__("Reservation not found", reservation_id=reservation_id)


class ReservationExpired(ReservationNotFound):
    code = "RESERVATION_EXPIRED"

    def __init__(self, reservation_id: str, expires_at=None):
        NotFoundError.__init__(self, "Reservation has expired", reservation_id=reservation_id,
                               expires_at=expires_at.isoformat() if expires_at else None)


class InsufficientStock(InventoryError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, available: Optional[float] = None, requested: Optional[float] = None):
        if available is None:
            message = "Insufficient stock for this operation"
        else:
            message = f"Insufficient stock. Available: {available}, Requested: {requested}"
        super().__init__(message, available=available, requested=requested)


class InsufficientAvailableStock(InventoryError):
    code = "INSUFFICIENT_AVAILABLE_STOCK"

    def __init__(self, available: float, requested: float):
        super().__init__(
            f"Insufficient available stock. Available: {available}, Requested: {requested}",
            available=available,
            requested=requested,
        )


class AlreadyReversed(InventoryError):
    code = "ALREADY_REVERSED"


class InvalidState(InventoryError):
    code = "INVALID_STATE"


class ValidationFailed(InventoryError):
    code = "VALIDATION_FAILED"


# Permanent failure: retrying a duplicate key write cannot succeed
class UniquenessConflict(InventoryError):
    status_code = 409
    code = "DUPLICATE_ENTRY"


# The only retryable class raised by application code (optimistic version mismatch)
class TransientConflict(InventoryError):
    status_code = 500
    code = "WRITE_CONFLICT"


class TransactionFailed(InventoryError):
    status_code = 500
    code = "TRANSACTION_FAILED"

    def __init__(self, message: str, attempts: int, operation: Optional[str] = None):
        super().__init__(message, attempts=attempts, operation=operation)
        self.attempts = attempts
        self.operation = operation
