"""Error taxonomy shared by the REST routers and the socket event layer."""


class CampusNotesError(Exception):
    """Base error. ``message`` is safe to show to the client."""

    status_code = 400

    def __init__(self, message: str = "Action failed"):
        super().__init__(message)
        self.message = message


class AuthenticationError(CampusNotesError):
    status_code = 401

    def __init__(self, message: str = "Authentication error"):
        super().__init__(message)


class AuthorizationError(CampusNotesError):
    status_code = 403


class ValidationError(CampusNotesError):
    status_code = 422


class NotFoundError(CampusNotesError):
    status_code = 404
