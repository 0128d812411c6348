class ChatError(Exception):

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.status = "fail" if str(self.status_code).startswith("4") else "error"


class NotFound(ChatError):

    status_code = 404


class NotAuthorized(ChatError):

    status_code = 403


class InvalidArgument(ChatError):

    status_code = 400


class AlreadyProcessed(ChatError):
    """The request is no longer in the state the caller expected."""

    status_code = 409


class DependencyFailure(ChatError):
    """Media store or notification failure. Logged by callers, never surfaced."""

    status_code = 502
