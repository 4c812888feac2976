class AppError(Exception):
    status_code: int = 500
    code: str = 'INTERNAL_ERROR'

    def __init__(self, message: str = 'internal error'):
        super().__init__(message)
        self.message = message


class ValidationError(AppError):
    status_code = 400
    code = 'VALIDATION_ERROR'


class UnauthorizedError(AppError):
    status_code = 401
    code = 'UNAUTHORIZED'


class NotFoundError(AppError):
    status_code = 404
    code = 'NOT_FOUND'


class DuplicateError(AppError):
    status_code = 409
    code = 'DUPLICATE_ERROR'


class InvalidTransitionError(AppError):
    status_code = 409
    code = 'INVALID_TRANSITION'

    def __init__(self, current: str, target: str):
        super().__init__(f'order can\'t move from "{current}" to "{target}"')
        self.current = current
        self.target = target


class ReconciliationError(AppError):
    """Order transaction failed; safe to retry"""
    status_code = 503
    code = 'RECONCILIATION_ERROR'
