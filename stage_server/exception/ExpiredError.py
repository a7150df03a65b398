class ExpiredError(Exception):
    """Raised when a message edit arrives after the edit window closed."""
    code = 'EXPIRED'

    def __init__(self, message='Edit window has expired'):
        super().__init__(message)
