class DomainException(Exception):
    pass


class ValidationError(DomainException):
    pass


class AccessDeniedError(DomainException):
    pass


class OrderNotFoundError(DomainException):
    pass


class NotificationNotFoundError(DomainException):
    pass


class InvalidStatusTransitionError(DomainException):
    def __init__(self, current, requested):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid status transition from '{_value(current)}' to '{_value(requested)}'"
        )


class OrderCreationError(DomainException):
    pass


class OrderServiceError(DomainException):
    pass


def _value(status) -> str:
    return getattr(status, "value", status)
