class NotFoundError(Exception):
    """Raised when a conversation, message or notification id does not resolve."""
    code = 'NOT_FOUND'

    def __init__(self, message='Not found'):
        super().__init__(message)
