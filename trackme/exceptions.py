"""Error taxonomy shared by the HTTP routes, the WebSocket channel and services.

Every error carries an HTTP status and a short machine readable code so the
boundary that catches it can turn it into a response or a ``timer_error``
event without inspecting the message.
"""


class TrackMeError(Exception):
    """Base class for errors recovered at an operation boundary."""

    status_code = 500
    code = "server_error"
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class Unauthorized(TrackMeError):
    """Missing or invalid identity."""

    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required"


class InvalidCredentials(TrackMeError):
    """Email/password pair did not match a user."""

    status_code = 401
    code = "invalid_credentials"
    default_message = "Incorrect email or password"


class NotFoundOrForbidden(TrackMeError):
    """Resource does not exist or belongs to someone else."""

    status_code = 404
    code = "not_found"
    default_message = "Parking not found or not authorised"


class UserNotFound(TrackMeError):
    status_code = 404
    code = "user_not_found"
    default_message = "User not found"


class NoActiveTimer(TrackMeError):
    status_code = 404
    code = "no_active_timer"
    default_message = "No active timer to cancel"


class InvalidTimerRequest(TrackMeError):
    status_code = 422
    code = "invalid_timer_request"
    default_message = "Invalid timer request"


class PersistenceFailure(TrackMeError):
    """A database call failed or did not answer in time."""

    status_code = 503
    code = "persistence_failure"
    default_message = "Storage unavailable"


class DuplicateOwner(TrackMeError):
    status_code = 409
    code = "duplicate_owner"
    default_message = "An account with this email already exists"


class CredentialInvalid(TrackMeError):
    status_code = 401
    code = "credential_invalid"
    default_message = "Invalid API key"


class CredentialDisabled(TrackMeError):
    status_code = 403
    code = "credential_disabled"
    default_message = "This API key has been disabled"


class CredentialExpired(TrackMeError):
    status_code = 403
    code = "credential_expired"
    default_message = "This API key has expired"


class ApiKeyNotFound(CredentialInvalid):
    """No API key record matches the given hash or id."""

    status_code = 404
    code = "api_key_not_found"
    default_message = "API key not found"


# Names used by the API key verification flow
ApiKeyDisabled = CredentialDisabled
ApiKeyExpired = CredentialExpired
