"""
errors.py — Pipeline error taxonomy

Every error raised on purpose by the pipeline derives from AutoRfpError and
carries the HTTP status the API layer should answer with.

Business Rules:
- ValidationError: malformed input, raised before any side effect
- NotFoundError: referenced request/participant/offer does not exist
- InvalidTransitionError: state machine refusal (closed request, awarded offer)
- ExtractionError: completion output unusable; that participant is skipped
- DeliveryError: transport gave up; only logged and reflected in status fields
- ConfigurationError: missing or malformed settings (e.g. reply base address)

Called by: services/*, routers/*, main.py (exception handler)
"""


class AutoRfpError(Exception):
    http_status = 500
    code = "internal_error"

    def __init__(self, message: str = "", **payload):
        self.message = message or self.code
        self.payload = payload
        super().__init__(self.message)

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.payload:
            body["detail"] = self.payload
        return body


class ConfigurationError(AutoRfpError):
    code = "configuration_error"


class ValidationError(AutoRfpError):
    http_status = 400
    code = "validation_error"


class NotFoundError(AutoRfpError):
    http_status = 404
    code = "not_found"


class InvalidTransitionError(AutoRfpError):
    http_status = 409
    code = "invalid_transition"


class ExtractionError(AutoRfpError):
    http_status = 502
    code = "extraction_failed"


class DeliveryError(AutoRfpError):
    http_status = 502
    code = "delivery_failed"
