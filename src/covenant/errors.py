"""Standard error catalog and the exception type every failure is rendered from.

Every client-facing failure is a :class:`StandardError`. Errors are built from
an :class:`ErrorTemplate` in the catalog below, optionally overriding the
detail (or any other field), and are never mutated afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    """Machine-readable error types carried in the ``type`` field."""

    INTERNAL_ERROR = "internal_error"
    DB_ERROR = "db_error"
    MODEL_ERROR = "model_error"
    MALFORMED_JSON = "malformedJSON"
    MALFORMED = "malformed"
    NO_METHOD_SUPPLIED = "noMethodSupplied"
    NO_METHOD_FOUND = "noMethodFound"
    NO_ARGS = "noArgsSupplied"
    NO_API_KEY = "noApiKey"
    INVALID_API_KEY = "invalidApiKey"
    INVALID_SIGNATURE = "invalidSignature"
    NO_SECRET = "noSecret"
    NO_SESSION_TOKEN = "noSessionToken"
    INVALID_SESSION = "invalidSession"
    SESSION_CREATION_ERROR = "sessionCreationError"
    SESSION_WRITE_ERROR = "sessionWriteError"
    SESSION_FLUSH_ERROR = "sessionFlushError"
    INVALID_CREDENTIALS = "invalidCredentials"
    USERNAME_TAKEN = "usernameTaken"


@dataclass(frozen=True)
class ErrorTemplate:
    """Catalog entry: the fixed parts of a standard error."""

    code: int
    kind: ErrorKind
    message: str
    detail: Any = None


class StandardError(Exception):
    """Typed failure rendered into the response envelope.

    Attributes:
        code: HTTP-style status class (400, 401, 404, 500).
        kind: Machine-readable error type.
        message: Human-readable summary.
        detail: Optional structured or string elaboration.
    """

    def __init__(
        self,
        code: int,
        kind: ErrorKind,
        message: str,
        detail: Any = None,
    ) -> None:
        super().__init__(message)
        self.__dict__["_template"] = ErrorTemplate(
            code=code, kind=kind, message=message, detail=detail
        )

    def __setattr__(self, name: str, value: Any) -> None:
        if name.startswith("__") and name.endswith("__"):
            super().__setattr__(name, value)
            return
        raise AttributeError(f"{type(self).__name__} is immutable")

    @classmethod
    def from_template(cls, template: ErrorTemplate) -> StandardError:
        return cls(template.code, template.kind, template.message, template.detail)

    @property
    def code(self) -> int:
        return self._template.code

    @property
    def kind(self) -> ErrorKind:
        return self._template.kind

    @property
    def message(self) -> str:
        return self._template.message

    @property
    def detail(self) -> Any:
        return self._template.detail

    @property
    def template(self) -> ErrorTemplate:
        return self._template

    def with_detail(self, detail: Any) -> StandardError:
        """Return a new error identical to this one except for ``detail``."""
        return StandardError.from_template(replace(self._template, detail=detail))

    def to_dict(self) -> dict[str, Any]:
        """Render the wire shape ``{code, type, message, detail}``."""
        return {
            "code": self.code,
            "type": self.kind.value,
            "message": self.message,
            "detail": self.detail,
        }

    def __repr__(self) -> str:
        return (
            f"StandardError(code={self.code}, kind={self.kind.value!r}, "
            f"message={self.message!r}, detail={self.detail!r})"
        )

    def __reduce__(self) -> tuple[Any, ...]:
        return (StandardError, (self.code, self.kind, self.message, self.detail))


class ContractError(Exception):
    """Raised at startup when an interface contract is misconfigured."""


SERVER_ERROR = ErrorTemplate(
    500, ErrorKind.INTERNAL_ERROR, "An internal server error has occurred."
)
DB_ERROR = ErrorTemplate(500, ErrorKind.DB_ERROR, "A database operation failed.")
MODEL_ERROR = ErrorTemplate(
    500, ErrorKind.MODEL_ERROR, "A persisted record could not be read."
)
INVALID_CREDENTIALS = ErrorTemplate(
    401, ErrorKind.INVALID_CREDENTIALS, "The username or password is incorrect."
)
USERNAME_TAKEN = ErrorTemplate(
    409, ErrorKind.USERNAME_TAKEN, "An account with that username already exists."
)


class REQUEST:
    MALFORMED_JSON = ErrorTemplate(
        400, ErrorKind.MALFORMED_JSON, "The request body is not a valid JSON object."
    )
    MALFORMED_VALIDATION = ErrorTemplate(
        400, ErrorKind.MALFORMED, "The request arguments failed validation."
    )
    NO_METHOD_SUPPLIED = ErrorTemplate(
        400, ErrorKind.NO_METHOD_SUPPLIED, "No method was supplied in the request."
    )
    NO_METHOD_FOUND = ErrorTemplate(
        404, ErrorKind.NO_METHOD_FOUND, "The requested method was not found."
    )
    NO_ARGS = ErrorTemplate(
        400, ErrorKind.NO_ARGS, "No arguments were supplied for the requested method."
    )


class API_KEY:
    NONE_RECEIVED = ErrorTemplate(
        401, ErrorKind.NO_API_KEY, "An API key is required for this method."
    )
    INVALID = ErrorTemplate(
        401, ErrorKind.INVALID_API_KEY, "The supplied API key is invalid or disabled."
    )


class SIGNED:
    INVALID_SIGNATURE = ErrorTemplate(
        401, ErrorKind.INVALID_SIGNATURE, "The request signature does not match."
    )
    NO_SECRET = ErrorTemplate(
        401, ErrorKind.NO_SECRET, "No signing secret exists for the supplied API key."
    )


class SESSION:
    NO_TOKEN = ErrorTemplate(
        401, ErrorKind.NO_SESSION_TOKEN, "A session token is required for this method."
    )
    INVALID = ErrorTemplate(
        401, ErrorKind.INVALID_SESSION, "The session token is invalid or has expired."
    )
    CREATION_ERROR = ErrorTemplate(
        500, ErrorKind.SESSION_CREATION_ERROR, "The session could not be created."
    )
    DB_WRITE_ERROR = ErrorTemplate(
        500, ErrorKind.SESSION_WRITE_ERROR, "The session could not be saved."
    )
    FLUSH_CACHE_ERROR = ErrorTemplate(
        500, ErrorKind.SESSION_FLUSH_ERROR, "The cached session could not be removed."
    )


def make_standard_error(
    template: ErrorTemplate | None = None,
    detail: Any = None,
    **overrides: Any,
) -> StandardError:
    """Build a :class:`StandardError` by merging ``template`` over ``SERVER_ERROR``.

    ``detail`` replaces the template detail when given. Remaining keyword
    overrides (``code``, ``kind``, ``message``) replace individual fields.
    """
    merged = SERVER_ERROR if template is None else template
    if detail is not None:
        overrides["detail"] = detail
    if overrides:
        merged = replace(merged, **overrides)
    return StandardError.from_template(merged)
