"""Domain errors raised by models and services, rendered by the handler in main.py."""


class DomainError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None, data: dict | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.data = data


class NotFound(DomainError):
    status_code = 404


class InsufficientCredits(DomainError):
    pass


class NoSkipCredits(DomainError):
    pass


class VendorSwitchNotAllowed(DomainError):
    pass


class PromoCodeInvalid(DomainError):
    pass


class PaymentVerificationFailed(DomainError):
    pass


class InvalidStateTransition(DomainError):
    status_code = 409


class AlreadyExists(DomainError):
    status_code = 409


class InvalidDeliveryZone(DomainError):
    def __init__(self, message: str, errors: list[str], suggested_zones: list[dict] | None = None):
        super().__init__(message, data={"errors": errors, "suggested_zones": suggested_zones or []})
        self.errors = errors
        self.suggested_zones = suggested_zones or []
