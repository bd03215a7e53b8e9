"""Error taxonomy shared by the services, the HTTP layer and the HTTP client."""

ALREADY_CLAIMED = "already_claimed"


class DispatchError(Exception):
    code = "error"
    http_status = 400

    def __init__(self, detail=None):
        super().__init__(detail or self.code)
        self.detail = detail

    def to_dict(self):
        body = {"error": self.code}
        if self.detail:
            body["detail"] = self.detail
        return body


class InvalidRequest(DispatchError):
    code = "invalid_request"
    http_status = 400


class NotFound(DispatchError):
    code = "not_found"
    http_status = 404


class InvalidTransition(DispatchError):
    """The caller's view of the order is stale; it must re-sync before retrying."""
    code = "invalid_transition"
    http_status = 409


class InvalidState(InvalidTransition):
    """The delivery is no longer `accepted`."""
    code = "invalid_state"


class NotOwner(DispatchError):
    code = "not_owner"
    http_status = 403


class TransientUnavailable(DispatchError):
    code = "unavailable"
    http_status = 503


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (InvalidRequest, NotFound, InvalidTransition, InvalidState, NotOwner, TransientUnavailable)
}
