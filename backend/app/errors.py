"""Error taxonomy shared by the realtime core, socket handlers and HTTP routes.

Each error knows its machine-readable ``code`` and the HTTP status the route
layer answers with. Socket handlers turn the same errors into failed
acknowledgements.
"""


class IcebreakerError(Exception):
    code = 'error'
    status = 500

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()

    def to_dict(self):
        return {'code': self.code, 'message': self.message}


class NotFoundError(IcebreakerError):
    """Resource not found"""
    code = 'not_found'
    status = 404


class ForbiddenError(IcebreakerError):
    """Not allowed to perform this action"""
    code = 'forbidden'
    status = 403


class InvalidStateError(IcebreakerError):
    """Action is not valid in the current state"""
    code = 'invalid_state'
    status = 409


class ConflictError(IcebreakerError):
    """A game is already in progress in this room"""
    code = 'conflict'
    status = 409


class InsufficientPlayersError(IcebreakerError):
    """Need at least 2 players"""
    code = 'insufficient_players'
    status = 400


class NoContentError(IcebreakerError):
    """No questions available"""
    code = 'no_content'
    status = 422


class PersistenceError(IcebreakerError):
    """Storage is unavailable"""
    code = 'persistence_error'
    status = 503


class ValidationError(IcebreakerError):
    """Malformed payload"""
    code = 'invalid_payload'
    status = 400

    def __init__(self, message=None, details=None):
        super().__init__(message)
        self.details = details or []

    def to_dict(self):
        data = super().to_dict()
        if self.details:
            data['details'] = self.details
        return data


class AuthenticationError(IcebreakerError):
    """Not authenticated"""
    code = 'unauthenticated'
    status = 401
