# coercion.py
"""
Coerce caller-supplied values against a ParameterSchema.

Type coercion happens first; bounds, length, pattern and enum checks run
only on the coerced value. Errors from every field are collected, so one
call reports every bad parameter at once.
"""

from __future__ import annotations

import copy
import json
import math
import re
from dataclasses import dataclass
from typing import Any, List, Tuple

from interface_mcp.compiler.errors import CoercionError
from interface_mcp.compiler.types import UNSET, ParameterSchema

_TRUE_TOKENS = {"true"}
_FALSE_TOKENS = {"false"}


@dataclass(frozen=True)
class CoercionIssue:
    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path or '<root>'}: {self.message}"

    def to_dict(self) -> dict:
        return {"path": self.path, "message": self.message}


def _join(path: str, part: Any) -> str:
    if isinstance(part, int):
        return f"{path}[{part}]"
    return f"{path}.{part}" if path else str(part)


class Coercer:
    """
    Args:
        allow_non_finite: Accept NaN and +/-Infinity for number fields.
    """

    def __init__(self, allow_non_finite: bool = False):
        self.allow_non_finite = allow_non_finite

    def coerce(self, value: Any, schema: ParameterSchema, path: str = "") -> Tuple[Any, List[CoercionIssue]]:
        issues: List[CoercionIssue] = []
        result = self._coerce(value, schema, path, issues)
        return result, issues

    # -----------------------------------------------------------------
    # type coercion
    # -----------------------------------------------------------------

    def _coerce(self, value: Any, schema: ParameterSchema, path: str, issues: List[CoercionIssue]) -> Any:
        if value is None and schema.optional:
            return None

        handler = getattr(self, f"_to_{schema.type}", None)
        before = len(issues)
        # "any" passes through untouched
        coerced = handler(value, schema, path, issues) if handler is not None else value
        if len(issues) == before:
            self._check_constraints(coerced, schema, path, issues)
        return coerced

    def _to_null(self, value, schema, path, issues):
        if value is not None:
            issues.append(CoercionIssue(path, f"expected null, got {type(value).__name__}"))
        return value

    def _to_string(self, value, schema, path, issues):
        if isinstance(value, str):
            return value
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        issues.append(CoercionIssue(path, f"expected string, got {type(value).__name__}"))
        return value

    def _to_number(self, value, schema, path, issues):
        if isinstance(value, bool):
            issues.append(CoercionIssue(path, "expected number, got bool"))
            return value
        if isinstance(value, (int, float)):
            number = value
        elif isinstance(value, str):
            number = self._parse_number(value.strip())
            if number is None:
                issues.append(CoercionIssue(path, f"expected number, got {value!r}"))
                return value
        else:
            issues.append(CoercionIssue(path, f"expected number, got {type(value).__name__}"))
            return value
        if isinstance(number, float) and not math.isfinite(number) and not self.allow_non_finite:
            issues.append(CoercionIssue(path, "NaN and Infinity are not allowed"))
            return value
        return number

    def _parse_number(self, text: str):
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            return None
        if math.isfinite(number) and number.is_integer() and re.fullmatch(r"[+-]?\d+\.0*", text):
            return int(number)
        return number

    def _to_integer(self, value, schema, path, issues):
        if isinstance(value, bool):
            issues.append(CoercionIssue(path, "expected integer, got bool"))
            return value
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            if math.isfinite(value) and value.is_integer():
                return int(value)
            issues.append(CoercionIssue(path, f"expected integer, got {value!r}"))
            return value
        if isinstance(value, str):
            number = self._parse_number(value.strip())
            if isinstance(number, int):
                return number
            if isinstance(number, float) and math.isfinite(number) and number.is_integer():
                return int(number)
            issues.append(CoercionIssue(path, f"expected integer, got {value!r}"))
            return value
        issues.append(CoercionIssue(path, f"expected integer, got {type(value).__name__}"))
        return value

    def _to_boolean(self, value, schema, path, issues):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            token = value.strip().lower()
            if token in _TRUE_TOKENS:
                return True
            if token in _FALSE_TOKENS:
                return False
        issues.append(CoercionIssue(path, f"expected boolean, got {value!r}"))
        return value

    def _decode_json(self, value: str, expected: str, path, issues):
        try:
            return json.loads(value)
        except ValueError:
            issues.append(CoercionIssue(path, f"expected {expected}, got {value!r}"))
            return UNSET

    def _to_array(self, value, schema, path, issues):
        if isinstance(value, str):
            decoded = self._decode_json(value, "array", path, issues)
            if decoded is UNSET:
                return value
            value = decoded
        if not isinstance(value, (list, tuple)):
            issues.append(CoercionIssue(path, f"expected array, got {type(value).__name__}"))
            return value
        if schema.items is None:
            return list(value)
        return [self._coerce(item, schema.items, _join(path, i), issues) for i, item in enumerate(value)]

    def _to_object(self, value, schema, path, issues):
        if isinstance(value, str):
            decoded = self._decode_json(value, "object", path, issues)
            if decoded is UNSET:
                return value
            value = decoded
        if not isinstance(value, dict):
            issues.append(CoercionIssue(path, f"expected object, got {type(value).__name__}"))
            return value
        if schema.properties is None:
            return dict(value)

        out = dict(value)
        for name, prop in schema.properties.items():
            field_path = _join(path, name)
            if name not in value:
                if prop.default is not UNSET:
                    out[name] = copy.deepcopy(prop.default)
                elif not prop.optional:
                    issues.append(CoercionIssue(field_path, "required field is missing"))
                continue
            out[name] = self._coerce(value[name], prop, field_path, issues)
        return out

    # -----------------------------------------------------------------
    # constraints
    # -----------------------------------------------------------------

    def _check_constraints(self, value: Any, schema: ParameterSchema, path: str,
                           issues: List[CoercionIssue]) -> None:
        if schema.enum is not None and value not in schema.enum:
            issues.append(CoercionIssue(path, f"must be one of {list(schema.enum)}, got {value!r}"))

        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if schema.minimum is not None and value < schema.minimum:
                issues.append(CoercionIssue(path, f"must be >= {schema.minimum}"))
            if schema.maximum is not None and value > schema.maximum:
                issues.append(CoercionIssue(path, f"must be <= {schema.maximum}"))
            if schema.exclusive_minimum is not None and value <= schema.exclusive_minimum:
                issues.append(CoercionIssue(path, f"must be > {schema.exclusive_minimum}"))
            if schema.exclusive_maximum is not None and value >= schema.exclusive_maximum:
                issues.append(CoercionIssue(path, f"must be < {schema.exclusive_maximum}"))

        if isinstance(value, str):
            if schema.min_length is not None and len(value) < schema.min_length:
                issues.append(CoercionIssue(path, f"must be at least {schema.min_length} characters"))
            if schema.max_length is not None and len(value) > schema.max_length:
                issues.append(CoercionIssue(path, f"must be at most {schema.max_length} characters"))
            if schema.pattern is not None:
                try:
                    matched = re.search(schema.pattern, value) is not None
                except re.error as e:
                    issues.append(CoercionIssue(path, f"invalid pattern {schema.pattern!r}: {e}"))
                else:
                    if not matched:
                        issues.append(CoercionIssue(path, f"does not match pattern {schema.pattern!r}"))

        if isinstance(value, list):
            if schema.min_items is not None and len(value) < schema.min_items:
                issues.append(CoercionIssue(path, f"must have at least {schema.min_items} items"))
            if schema.max_items is not None and len(value) > schema.max_items:
                issues.append(CoercionIssue(path, f"must have at most {schema.max_items} items"))


def coerce(value: Any, schema: ParameterSchema, *, allow_non_finite: bool = False) -> Tuple[Any, List[CoercionIssue]]:
    """
    Coerce `value` against `schema`.

    Args:
        value: Raw caller-supplied value.
        schema: Compiled schema.
        allow_non_finite: Accept NaN / Infinity for number fields.

    Returns:
        (coerced value, issues). The value is only meaningful when issues
        is empty.
    """
    return Coercer(allow_non_finite).coerce(value, schema)


def coerce_or_raise(value: Any, schema: ParameterSchema, *, allow_non_finite: bool = False) -> Any:
    """Like `coerce`, but raises CoercionError instead of returning issues."""
    result, issues = coerce(value, schema, allow_non_finite=allow_non_finite)
    if issues:
        raise CoercionError(issues)
    return result
