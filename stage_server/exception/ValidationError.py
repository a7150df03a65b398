class ValidationError(ValueError):
    """Raised when input is malformed or missing. Never retried."""
    code = 'VALIDATION_ERROR'

    def __init__(self, message):
        super().__init__(message)
