class ServiceError(Exception):
    status = 400

    def __init__(self, code="SERVICE_ERROR", message="Service error", details=None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(ServiceError):
    """Malformed or out-of-range input."""
    status = 422

    def __init__(self, message="Validation failed", details=None, code="VALIDATION_ERROR"):
        super().__init__(code, message, details)


class Forbidden(ServiceError):
    """Actor lacks permission for the target entity."""
    status = 403

    def __init__(self, message="You are not allowed to do this", details=None, code="FORBIDDEN"):
        super().__init__(code, message, details)


class InvalidState(ServiceError):
    """Operation is not legal in the entity's current lifecycle state."""
    status = 409

    def __init__(self, message="Operation not allowed in the current state", details=None, code="INVALID_STATE"):
        super().__init__(code, message, details)


class NotFound(ServiceError):
    status = 404

    def __init__(self, message="Resource not found", details=None, code="NOT_FOUND"):
        super().__init__(code, message, details)


class Conflict(ServiceError):
    status = 409

    def __init__(self, message="Conflicting request", details=None, code="CONFLICT"):
        super().__init__(code, message, details)
