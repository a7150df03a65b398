class ForbiddenError(Exception):
    """Raised when the caller is not a participant, or not the owner of the resource."""
    code = 'FORBIDDEN'

    def __init__(self, message='Forbidden'):
        super().__init__(message)
