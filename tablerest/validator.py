"""
Validation adapters for tablerest.

A validator checks single values against rule strings stored on a resource's
columns. The rule syntax is owned by the validator, not by the resource, so a
different backend can be plugged in as long as it satisfies the `Validator`
protocol.

`RuleValidator` understands comma-separated rules in the style of
go-playground's validator tags, e.g. ``"required,min=4,max=64"``:

    required, omitempty, min=N, max=N, len=N, gt=N, gte=N, lt=N, lte=N,
    positive, numeric, number, boolean, alpha, alphanum, email, uuid, uuid4,
    datetime, datetime=<strptime format>, oneof=a b c

Size rules (min/max/len/gt/gte/lt/lte) compare a string's or collection's
length, or a number's value.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from decimal import Decimal
from functools import lru_cache
from typing import Any, Callable, Dict, Mapping, Optional, Protocol, Tuple, runtime_checkable

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

_UUID_ADAPTER = TypeAdapter(uuid.UUID)
_DATETIME_ADAPTER = TypeAdapter(datetime)
_FLOAT_ADAPTER = TypeAdapter(float)
_EMAIL_ADAPTER = TypeAdapter(EmailStr)

_NUMERIC_RE = re.compile(r"^[-+]?[0-9]+(?:\.[0-9]+)?$")
_NUMBER_RE = re.compile(r"^[0-9]+$")
_BOOLEAN_WORDS = frozenset({"true", "false", "t", "f", "1", "0"})
_SIZE_TAGS = frozenset({"min", "max", "len", "gt", "gte", "lt", "lte"})

Rule = Tuple[str, Optional[str]]


class RuleViolation(Exception):
    """A value did not satisfy one rule of a rule string."""

    def __init__(self, tag: str, param: Optional[str] = None) -> None:
        self.tag = tag
        self.param = param
        label = tag if param is None else f"{tag}={param}"
        super().__init__(f"failed on the '{label}' rule")


@runtime_checkable
class Validator(Protocol):
    """
    Capability boundary used by resources and the operation pipeline.
    """

    def check_rule(self, rule: str) -> None:
        """Raise ValueError if `rule` is not understood by this validator."""
        ...

    def validate_one(self, value: Any, rule: str) -> None:
        """Raise `RuleViolation` if `value` does not satisfy `rule`."""
        ...

    def validate_batch(self, values: Mapping[str, Any], rules: Mapping[str, str]) -> Dict[str, str]:
        """Check every value against its rule; return all failures keyed by name."""
        ...


class BlankValidator:
    """Accepts every value. Useful for trusted callers and tests."""

    def check_rule(self, rule: str) -> None:
        return None

    def validate_one(self, value: Any, rule: str) -> None:
        return None

    def validate_batch(self, values: Mapping[str, Any], rules: Mapping[str, str]) -> Dict[str, str]:
        return {}


@lru_cache(maxsize=512)
def parse_rule(rule: str) -> Tuple[Rule, ...]:
    """
    Split a rule string into (tag, param) pairs.

    Raises ValueError for tags the validator does not know and for size
    rules without a numeric parameter.
    """
    parsed = []
    for chunk in rule.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        tag, sep, param = chunk.partition("=")
        tag = tag.strip()
        if tag not in _CHECKS and tag not in ("required", "omitempty"):
            raise ValueError(f"unknown validation rule '{tag}' in '{rule}'")
        param = param.strip() if sep else None
        if tag in _SIZE_TAGS:
            try:
                _param_number(tag, param)
            except ValueError as exc:
                raise ValueError(f"validation rule '{tag}' needs a numeric parameter in '{rule}'") from exc
        parsed.append((tag, param))
    return tuple(parsed)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _size(value: Any) -> Optional[float]:
    if _is_number(value):
        return float(value)
    if isinstance(value, (str, bytes, list, tuple, dict, set, frozenset)):
        return float(len(value))
    return None


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if _is_number(value):
        return float(value)
    if isinstance(value, str) and _NUMERIC_RE.match(value.strip()):
        try:
            return _FLOAT_ADAPTER.validate_python(value.strip())
        except PydanticValidationError:
            return None
    return None


def _param_number(tag: str, param: Optional[str]) -> float:
    if param is None:
        raise ValueError(f"validation rule '{tag}' requires a parameter")
    return float(param)


def _size_check(compare: Callable[[float, float], bool]) -> Callable[[Any, Optional[str], str], bool]:
    def check(value: Any, param: Optional[str], tag: str) -> bool:
        size = _size(value)
        return size is not None and compare(size, _param_number(tag, param))

    return check


def _check_positive(value: Any, param: Optional[str], tag: str) -> bool:
    number = _as_number(value)
    return number is not None and number > 0


def _check_numeric(value: Any, param: Optional[str], tag: str) -> bool:
    if _is_number(value):
        return True
    return isinstance(value, str) and bool(_NUMERIC_RE.match(value))


def _check_number(value: Any, param: Optional[str], tag: str) -> bool:
    if isinstance(value, int) and not isinstance(value, bool):
        return value >= 0
    return isinstance(value, str) and bool(_NUMBER_RE.match(value))


def _check_boolean(value: Any, param: Optional[str], tag: str) -> bool:
    if isinstance(value, bool):
        return True
    return isinstance(value, str) and value.lower() in _BOOLEAN_WORDS


def _check_alpha(value: Any, param: Optional[str], tag: str) -> bool:
    return isinstance(value, str) and value.isascii() and value.isalpha()


def _check_alphanum(value: Any, param: Optional[str], tag: str) -> bool:
    return isinstance(value, str) and value.isascii() and value.isalnum()


def _check_email(value: Any, param: Optional[str], tag: str) -> bool:
    if not isinstance(value, str):
        return False
    try:
        _EMAIL_ADAPTER.validate_python(value)
    except PydanticValidationError:
        return False
    return True


def _parse_uuid(value: Any) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    if not isinstance(value, str):
        return None
    try:
        return _UUID_ADAPTER.validate_python(value)
    except PydanticValidationError:
        return None


def _check_uuid(value: Any, param: Optional[str], tag: str) -> bool:
    return _parse_uuid(value) is not None


def _check_uuid4(value: Any, param: Optional[str], tag: str) -> bool:
    parsed = _parse_uuid(value)
    return parsed is not None and parsed.version == 4


def _check_datetime(value: Any, param: Optional[str], tag: str) -> bool:
    if isinstance(value, datetime):
        return True
    if not isinstance(value, str):
        return False
    try:
        if param:
            datetime.strptime(value, param)
        else:
            _DATETIME_ADAPTER.validate_python(value)
    except (ValueError, PydanticValidationError):
        return False
    return True


def _check_oneof(value: Any, param: Optional[str], tag: str) -> bool:
    options = (param or "").split()
    if isinstance(value, bool):
        value = "true" if value else "false"
    return str(value) in options


_CHECKS: Dict[str, Callable[[Any, Optional[str], str], bool]] = {
    "min": _size_check(lambda size, limit: size >= limit),
    "max": _size_check(lambda size, limit: size <= limit),
    "len": _size_check(lambda size, limit: size == limit),
    "gt": _size_check(lambda size, limit: size > limit),
    "gte": _size_check(lambda size, limit: size >= limit),
    "lt": _size_check(lambda size, limit: size < limit),
    "lte": _size_check(lambda size, limit: size <= limit),
    "positive": _check_positive,
    "numeric": _check_numeric,
    "number": _check_number,
    "boolean": _check_boolean,
    "alpha": _check_alpha,
    "alphanum": _check_alphanum,
    "email": _check_email,
    "uuid": _check_uuid,
    "uuid4": _check_uuid4,
    "datetime": _check_datetime,
    "oneof": _check_oneof,
}


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, list, tuple, dict, set, frozenset)):
        return len(value) == 0
    return False


class RuleValidator:
    """
    Validator for comma-separated rule strings.

    Values that are None pass every rule except `required`; `omitempty` also
    lets empty strings and collections through.
    """

    def check_rule(self, rule: str) -> None:
        parse_rule(rule)

    def validate_one(self, value: Any, rule: str) -> None:
        rules = parse_rule(rule)
        tags = {tag for tag, _ in rules}
        if _is_empty(value):
            if "required" in tags:
                raise RuleViolation("required")
            if value is None or "omitempty" in tags:
                return

        for tag, param in rules:
            if tag in ("required", "omitempty"):
                continue
            if not _CHECKS[tag](value, param, tag):
                raise RuleViolation(tag, param)

    def validate_batch(self, values: Mapping[str, Any], rules: Mapping[str, str]) -> Dict[str, str]:
        failures: Dict[str, str] = {}
        for name, value in values.items():
            rule = rules.get(name) or ""
            if not rule:
                continue
            try:
                self.validate_one(value, rule)
            except RuleViolation as exc:
                failures[name] = str(exc)
        return failures


__all__ = [
    "BlankValidator",
    "RuleValidator",
    "RuleViolation",
    "Validator",
    "parse_rule",
]
