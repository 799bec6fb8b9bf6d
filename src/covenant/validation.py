"""Rule-based parameter validation for contract arguments.

Each parameter of a contract carries a :class:`ParamRule`: whether it is
required and a mapping of validation kinds to their configuration, e.g.::

    ParamRule(
        param="password",
        required=True,
        validations={"is_type": "string", "min_length": 6},
    )

:func:`validate_params` checks an argument bag against a list of rules and
raises a single ``malformed`` :class:`~covenant.errors.StandardError` whose
detail lists every violation found.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any

from covenant.errors import REQUEST, ContractError, make_standard_error

MISSING_ARG = "missing_arg"
MAX_LENGTH_EXCEEDED = "max_length_exceeded"
MIN_LENGTH_NOT_MET = "min_length_not_met"
INVALID_EMAIL = "invalid_email"
ARGUMENT_TYPE_MISMATCH = "argument_type_mismatch"
ARGUMENT_OUT_OF_RANGE = "argument_out_of_range"
ARGUMENT_NOT_URL = "argument_not_url"
ARGUMENT_NOT_JSON = "argument_not_json"
ARGUMENT_NOT_AN_ARRAY = "argument_not_an_array"
ARGUMENT_INVALID_PATTERN = "argument_invalid_pattern"

TYPE_NAMES = ("string", "number", "boolean", "date")

EMAIL_PATTERN = re.compile(
    r"^(([^<>()\[\]\\.,;:\s@\"]+(\.[^<>()\[\]\\.,;:\s@\"]+)*)|(\".+\"))@"
    r"((\[[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\])|(([a-zA-Z\-0-9]+\.)+[a-zA-Z]{2,}))$"
)

# Public hosts only: private, loopback and link-local IPv4 ranges are rejected.
URL_PATTERN = re.compile(
    r"^(?:(?:https?|ftp)://)?"
    r"(?:(?!(?:10|127)(?:\.\d{1,3}){3})"
    r"(?!(?:169\.254|192\.168)(?:\.\d{1,3}){2})"
    r"(?!172\.(?:1[6-9]|2\d|3[0-1])(?:\.\d{1,3}){2})"
    r"(?:[1-9]\d?|1\d\d|2[01]\d|22[0-3])"
    r"(?:\.(?:1?\d{1,2}|2[0-4]\d|25[0-5])){2}"
    r"(?:\.(?:[1-9]\d?|1\d\d|2[0-4]\d|25[0-4]))"
    r"|(?:(?:[a-z\u00a1-\uffff0-9]-*)*[a-z\u00a1-\uffff0-9]+)"
    r"(?:\.(?:[a-z\u00a1-\uffff0-9]-*)*[a-z\u00a1-\uffff0-9]+)*"
    r"(?:\.(?:[a-z\u00a1-\uffff]{2,})))"
    r"(?::\d{2,5})?(?:/\S*)?$",
    re.IGNORECASE,
)


@dataclass(frozen=True)
class ValidationIssue:
    """A single parameter violation, rendered as ``{code, param, opt_desc}``."""

    code: str
    param: str
    opt_desc: Any = None

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "param": self.param, "opt_desc": self.opt_desc}


@dataclass(frozen=True)
class ParamRule:
    """Validation rule set for one named parameter."""

    param: str
    required: bool = False
    validations: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_definition(cls, definition: Mapping[str, Any]) -> ParamRule:
        """Build a rule from its declarative form and check every kind it names."""
        param = definition.get("param")
        if not isinstance(param, str) or not param:
            raise ContractError("Parameter rules require a non-empty 'param' name")
        validations = definition.get("validation", definition.get("validations")) or {}
        if not isinstance(validations, Mapping):
            raise ContractError(f"Validation for parameter '{param}' must be a mapping")
        rule = cls(
            param=param,
            required=bool(definition.get("required", False)),
            validations=_normalize_config(param, validations),
        )
        check_rule(rule)
        return rule

    def describe(self) -> dict[str, Any]:
        return {
            "param": self.param,
            "required": self.required,
            "validation": dict(self.validations),
        }


def js_type_name(value: Any) -> str:
    """Name a JSON value's type the way clients of the envelope see it."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, int | float):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list | tuple):
        return "array"
    return "object"


def _length(value: Any) -> int:
    if isinstance(value, str | list | tuple):
        return len(value)
    return len(str(value))


def _parses_as_date(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int | float):
        try:
            datetime.fromtimestamp(value / 1000)
        except (OverflowError, OSError, ValueError):
            return False
        return True
    if not isinstance(value, str) or not value.strip():
        return False
    text = value.strip()
    try:
        datetime.fromisoformat(text.replace("Z", "+00:00"))
        return True
    except ValueError:
        pass
    try:
        parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return False
    return True


def _is_type(value: Any, expected: str) -> bool:
    if expected == "date":
        return _parses_as_date(value)
    return js_type_name(value) == expected


def _is_json(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        json.loads(value)
    except ValueError:
        return False
    return True


def _matches(value: Any, pattern: str) -> bool:
    return re.search(pattern, value if isinstance(value, str) else str(value)) is not None


Check = Callable[[Any, Any], bool]
Describe = Callable[[Any, Any], Any]

_RULES: dict[str, tuple[str, Check, Describe]] = {
    "max_length": (
        MAX_LENGTH_EXCEEDED,
        lambda value, bound: _length(value) <= bound,
        lambda value, bound: {"max": bound, "sent": _length(value)},
    ),
    "min_length": (
        MIN_LENGTH_NOT_MET,
        lambda value, bound: _length(value) >= bound,
        lambda value, bound: {"min": bound, "sent": _length(value)},
    ),
    "valid_email": (
        INVALID_EMAIL,
        lambda value, _: isinstance(value, str) and EMAIL_PATTERN.match(value) is not None,
        lambda value, _: value,
    ),
    "is_type": (
        ARGUMENT_TYPE_MISMATCH,
        _is_type,
        lambda value, expected: {
            "expected_type": expected,
            "provided_type": js_type_name(value),
        },
    ),
    "in_set": (
        ARGUMENT_OUT_OF_RANGE,
        lambda value, allowed: value in allowed,
        lambda value, allowed: {"acceptable_set": list(allowed), "sent": value},
    ),
    "is_url": (
        ARGUMENT_NOT_URL,
        lambda value, _: isinstance(value, str) and URL_PATTERN.match(value) is not None,
        lambda value, _: value,
    ),
    "is_json": (ARGUMENT_NOT_JSON, lambda value, _: _is_json(value), lambda value, _: value),
    "is_array": (
        ARGUMENT_NOT_AN_ARRAY,
        lambda value, _: isinstance(value, list | tuple),
        lambda value, _: value,
    ),
    "regex": (
        ARGUMENT_INVALID_PATTERN,
        _matches,
        lambda value, pattern: {"expected_pattern": pattern, "provided": value},
    ),
}

# Kinds switched on by a truthy flag; a falsy flag disables the check.
_FLAG_KINDS = frozenset({"valid_email", "is_url", "is_json", "is_array"})

VALIDATION_KINDS = frozenset(_RULES)


def _normalize_config(param: str, validations: Mapping[str, Any]) -> dict[str, Any]:
    normalized: dict[str, Any] = {}
    for kind, config in validations.items():
        if kind in {"max_length", "min_length"}:
            try:
                normalized[kind] = int(config)
            except (TypeError, ValueError) as exc:
                raise ContractError(
                    f"'{kind}' for parameter '{param}' must be an integer"
                ) from exc
        else:
            normalized[kind] = config
    return normalized


def check_rule(rule: ParamRule) -> None:
    """Reject rules naming unknown kinds or carrying unusable configuration."""
    for kind, config in rule.validations.items():
        if kind not in _RULES:
            raise ContractError(
                f"Unknown validation kind '{kind}' for parameter '{rule.param}'"
            )
        if kind == "is_type" and config not in TYPE_NAMES:
            raise ContractError(
                f"is_type for parameter '{rule.param}' must be one of {TYPE_NAMES}"
            )
        if kind == "in_set" and not isinstance(config, list | tuple):
            raise ContractError(f"in_set for parameter '{rule.param}' must be a list")
        if kind == "regex":
            try:
                re.compile(config)
            except (re.error, TypeError) as exc:
                raise ContractError(
                    f"regex for parameter '{rule.param}' does not compile: {exc}"
                ) from exc


def validate_value(param: str, value: Any, kind: str, config: Any) -> ValidationIssue | None:
    """Run one validation kind against a present value."""
    if kind in _FLAG_KINDS and not config:
        return None
    code, check, describe = _RULES[kind]
    try:
        passed = check(value, config)
    except (TypeError, ValueError):
        passed = False
    if passed:
        return None
    return ValidationIssue(code=code, param=param, opt_desc=describe(value, config))


def collect_issues(data: Mapping[str, Any], rules: Sequence[ParamRule]) -> list[ValidationIssue]:
    issues: list[ValidationIssue] = []
    for rule in rules:
        if rule.param not in data:
            if rule.required:
                issues.append(ValidationIssue(code=MISSING_ARG, param=rule.param))
            continue
        value = data[rule.param]
        for kind, config in rule.validations.items():
            issue = validate_value(rule.param, value, kind, config)
            if issue is not None:
                issues.append(issue)
    return issues


def validate_params(data: Mapping[str, Any], rules: Sequence[ParamRule]) -> Mapping[str, Any]:
    """Return ``data`` unchanged when every rule passes.

    Raises:
        StandardError: ``malformed`` with the list of violations as detail.
    """
    issues = collect_issues(data, rules)
    if issues:
        raise make_standard_error(
            REQUEST.MALFORMED_VALIDATION, [issue.to_dict() for issue in issues]
        )
    return data
