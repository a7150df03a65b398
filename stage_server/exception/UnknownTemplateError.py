from stage_server.exception.ValidationError import ValidationError


class UnknownTemplateError(ValidationError):
    """Raised when a notification template name is not in the known set."""

    def __init__(self, template_name):
        self.template_name = template_name
        super().__init__(f'Notification template "{template_name}" not found')
