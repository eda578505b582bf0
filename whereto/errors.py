"""Error kinds raised by the plan engine"""


class WheretoError(Exception):
    """Base error; ``kind`` and ``status_code`` drive the HTTP mapping"""

    kind = "error"
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFoundError(WheretoError):
    """Plan, venue or round does not exist"""

    kind = "not_found"
    status_code = 404


class InvalidStateError(WheretoError):
    """Operation not legal in the current plan/round status"""

    kind = "invalid_state"
    status_code = 409


class ForbiddenError(WheretoError):
    """Caller lacks the required role"""

    kind = "forbidden"
    status_code = 403


class UnavailableError(WheretoError):
    """Transient persistence or catalog failure; safe to retry with backoff"""

    kind = "unavailable"
    status_code = 503
