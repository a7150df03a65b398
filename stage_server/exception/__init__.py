"""Error taxonomy shared by the stores, services and both protocol boundaries."""

from stage_server.exception.UnauthorizedError import UnauthorizedError
from stage_server.exception.ValidationError import ValidationError
from stage_server.exception.ForbiddenError import ForbiddenError
from stage_server.exception.NotFoundError import NotFoundError
from stage_server.exception.ExpiredError import ExpiredError
from stage_server.exception.UnknownTemplateError import UnknownTemplateError

__all__ = ['UnauthorizedError', 'ValidationError', 'ForbiddenError', 'NotFoundError', 'ExpiredError',
           'UnknownTemplateError']
