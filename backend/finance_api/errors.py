"""Problem-details (RFC 7807) errors raised by services and persistence.

Every error that reaches the client is rendered as
``{type, title, status, detail?, instance?}``.
"""

from typing import Any

ERRORS_BASE = "https://opa.dev/errors"


class ProblemError(Exception):
    status: int = 500
    title: str = "Internal Server Error"
    slug: str = "internal-error"

    def __init__(self, detail: str | None = None, instance: str | None = None) -> None:
        super().__init__(detail or self.title)
        self.detail = detail
        self.instance = instance

    @property
    def type(self) -> str:
        return f"{ERRORS_BASE}/{self.slug}"

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"type": self.type, "title": self.title, "status": self.status}
        if self.detail:
            body["detail"] = self.detail
        if self.instance:
            body["instance"] = self.instance
        return body


class ValidationProblem(ProblemError):
    status = 400
    title = "Validation Error"
    slug = "validation-error"


class UnauthorizedProblem(ProblemError):
    status = 401
    title = "Unauthorized"
    slug = "unauthorized"


class ForbiddenProblem(ProblemError):
    status = 403
    title = "Forbidden"
    slug = "forbidden"


class NotFoundProblem(ProblemError):
    status = 404
    title = "Not Found"
    slug = "not-found"


class ConflictProblem(ProblemError):
    status = 409
    title = "Conflict"
    slug = "conflict"


class InternalProblem(ProblemError):
    pass
