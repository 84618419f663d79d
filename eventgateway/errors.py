"""Error taxonomy shared by the ingestion pipeline and the HTTP layer."""


class EventGatewayError(Exception):
    """Base error. Carries the HTTP status the routing layer should answer with."""

    status_code = 500

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        body = {"message": self.message}
        if self.field is not None:
            body = {"field": self.field, **body}
        return body


class SchemaViolation(EventGatewayError):
    """A draft does not have the shape of a canonical event."""

    status_code = 400


class ValidationError(EventGatewayError):
    status_code = 400


class BatchSizeError(ValidationError):
    pass


class NormalizationError(EventGatewayError):
    """A raw platform payload could not be mapped to a draft."""

    status_code = 400


class ImmutabilityViolation(EventGatewayError):
    status_code = 403

    def __init__(self, message: str = "Events are immutable and cannot be modified", field: str | None = None):
        super().__init__(message, field)


class NotFound(EventGatewayError):
    status_code = 404


class StorageFailure(EventGatewayError):
    status_code = 500


class DuplicateEvent(StorageFailure):
    status_code = 409
