from __future__ import annotations


class CareHubError(Exception):
    code = "internal"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def as_detail(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class UnauthenticatedError(CareHubError):
    code = "unauthenticated"
    status_code = 401


class ForbiddenError(CareHubError):
    code = "forbidden"
    status_code = 403


class NotFoundError(CareHubError):
    code = "not_found"
    status_code = 404


class InvalidActionError(CareHubError):
    code = "invalid_action"
    status_code = 400


class InvalidMetadataError(CareHubError):
    code = "invalid_metadata"
    status_code = 400


class InvalidFilterError(CareHubError):
    code = "invalid_filter"
    status_code = 400


class ConflictError(CareHubError):
    code = "conflict"
    status_code = 409


class InternalError(CareHubError):
    code = "internal"
    status_code = 500
