from __future__ import annotations


class QmsError(Exception):
    pass


class ValidationError(QmsError):
    pass


class AuthorizationError(QmsError):
    pass


class NotFoundError(QmsError):
    pass


class ConflictError(QmsError):
    pass


class InternalError(QmsError):
    pass
