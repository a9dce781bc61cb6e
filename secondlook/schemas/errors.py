"""
schemas/errors.py — Error bodies the API returns

ErrorResponse is the body of every non-2xx response (see the handlers in
main.py). JobError is the coarse, user-facing failure stored on a snapshot;
it never carries stack traces or third-party error bodies.
"""

from pydantic import BaseModel


class FieldError(BaseModel):
    loc: list[str | int]
    msg: str


class ErrorResponse(BaseModel):
    error: str
    status_code: int
    request_id: str = ""
    detail: list[FieldError] | None = None


class JobError(BaseModel):
    kind: str
    message: str
