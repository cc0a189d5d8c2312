"""Domain error taxonomy for the order, inventory and ticket lifecycle."""

from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    NOT_FOUND = "NOT_FOUND"
    ILLEGAL_TRANSITION = "ILLEGAL_TRANSITION"
    INSUFFICIENT_INVENTORY = "INSUFFICIENT_INVENTORY"
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    EXTERNAL_DEPENDENCY_FAILURE = "EXTERNAL_DEPENDENCY_FAILURE"
    INVALID_CART = "INVALID_CART"
    CAPACITY_CONFLICT = "CAPACITY_CONFLICT"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    INVALID_AMOUNT = "INVALID_AMOUNT"


class DomainError(Exception):
    """Base domain error with code, HTTP status and user-safe message."""

    code: ErrorCode = ErrorCode.NOT_FOUND
    status_code: int = 400

    def __init__(self, message: str, **extra) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class NotFoundError(DomainError):
    """Raised when an order, ticket, category or event is absent."""

    code = ErrorCode.NOT_FOUND
    status_code = 404

    def __init__(self, entity: str, entity_id) -> None:
        super().__init__(f"{entity} not found", entity=entity, id=entity_id)
        self.entity = entity
        self.entity_id = entity_id


class IllegalTransitionError(DomainError):
    """Raised when the order state machine rejects a target status."""

    code = ErrorCode.ILLEGAL_TRANSITION
    status_code = 409

    def __init__(self, current: str, target: str, reason: str | None = None) -> None:
        message = reason or f"Cannot move order from {current} to {target}"
        super().__init__(message, current_status=current, target_status=target)
        self.current = current
        self.target = target


class InsufficientInventoryError(DomainError):
    """Raised when a requested quantity cannot be reserved."""

    code = ErrorCode.INSUFFICIENT_INVENTORY
    status_code = 409

    def __init__(self, category_id: int, requested: int, remaining: int, reason: str) -> None:
        super().__init__(
            f"Only {remaining} tickets remaining for category {category_id}",
            category_id=category_id,
            requested=requested,
            remaining=remaining,
            reason=reason,
        )
        self.category_id = category_id
        self.requested = requested
        self.remaining = remaining
        self.reason = reason


class AlreadyProcessedError(DomainError):
    """Idempotency short-circuit: the requested effect already happened."""

    code = ErrorCode.ALREADY_PROCESSED
    status_code = 200

    def __init__(self, message: str, **extra) -> None:
        super().__init__(message, **extra)


class ExternalDependencyError(DomainError):
    """Raised when the payment or notification collaborator fails."""

    code = ErrorCode.EXTERNAL_DEPENDENCY_FAILURE
    status_code = 502

    def __init__(self, dependency: str, message: str) -> None:
        super().__init__(message, dependency=dependency)
        self.dependency = dependency


class InvalidCartError(DomainError):
    """Raised when a cart cannot become an order."""

    code = ErrorCode.INVALID_CART
    status_code = 400


class CapacityConflictError(DomainError):
    """Raised when capacity would drop below units already sold."""

    code = ErrorCode.CAPACITY_CONFLICT
    status_code = 409

    def __init__(self, category_id: int, requested: int, sold: int) -> None:
        super().__init__(
            f"Cannot set capacity to {requested}. {sold} tickets already sold.",
            category_id=category_id,
            sold=sold,
        )


class InvalidSignatureError(DomainError):
    """Raised when a payment webhook fails signature verification."""

    code = ErrorCode.INVALID_SIGNATURE
    status_code = 400


class InvalidAmountError(DomainError):
    """Raised when a refund amount is outside the order total."""

    code = ErrorCode.INVALID_AMOUNT
    status_code = 400
