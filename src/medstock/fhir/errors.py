"""Exception types raised by the FHIR gateway and inventory service."""


class MedStockError(Exception):
    """Base class for all MedStock errors."""


class FHIRRequestError(MedStockError):
    """A FHIR store call returned a non-success HTTP status.

    Attributes:
        status_code: HTTP status returned by the store
        body: Response body text, empty when it could not be read
        operation: Gateway operation name (read, search, create, ...)
    """

    def __init__(self, operation: str, status_code: int, body: str = "") -> None:
        self.operation = operation
        self.status_code = status_code
        self.body = body
        message = f"FHIR {operation} failed: {status_code}"
        if body:
            message += f" - {body}"
        super().__init__(message)


class ValidationError(MedStockError):
    """Registration form is missing required fields."""


class SaveInProgressError(MedStockError):
    """A save is already running on this service instance."""
