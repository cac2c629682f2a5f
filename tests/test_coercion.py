"""Tests for parameter coercion and constraint checks."""

import math
from types import MappingProxyType

import pytest

from interface_mcp.compiler.errors import CoercionError
from interface_mcp.compiler.types import ParameterSchema
from interface_mcp.runtime.coercion import coerce, coerce_or_raise


def _object(**props) -> ParameterSchema:
    return ParameterSchema(type="object", properties=MappingProxyType(props))


NUMBER = ParameterSchema(type="number")
INTEGER = ParameterSchema(type="integer")
BOOLEAN = ParameterSchema(type="boolean")
STRING = ParameterSchema(type="string")


class TestScalarCoercion:
    """Type coercion of single values."""

    @pytest.mark.parametrize("raw,expected", [
        ("2", 2),
        (" 2.5 ", 2.5),
        ("-4", -4),
        ("3.0", 3),
        (7, 7),
        (1.25, 1.25),
    ])
    def test_number(self, raw, expected):
        value, issues = coerce(raw, NUMBER)
        assert issues == []
        assert value == expected
        assert type(value) is type(expected)

    def test_number_rejects_garbage_and_bool(self):
        assert coerce("two", NUMBER)[1]
        assert coerce(True, NUMBER)[1]
        assert coerce("", NUMBER)[1]

    def test_non_finite_numbers(self):
        value, issues = coerce("NaN", NUMBER)
        assert issues and "NaN" in issues[0].message
        assert coerce(float("inf"), NUMBER)[1]

        value, issues = coerce("inf", NUMBER, allow_non_finite=True)
        assert issues == []
        assert math.isinf(value)

    def test_integer(self):
        assert coerce("42", INTEGER) == (42, [])
        assert coerce(4.0, INTEGER) == (4, [])
        assert coerce("4.5", INTEGER)[1]
        assert coerce(False, INTEGER)[1]

    @pytest.mark.parametrize("raw,expected", [
        ("true", True),
        (" FALSE ", False),
        ("True", True),
        (False, False),
    ])
    def test_boolean(self, raw, expected):
        assert coerce(raw, BOOLEAN) == (expected, [])

    @pytest.mark.parametrize("raw", ["yes", "1", 1, "on", None])
    def test_boolean_rejects_other_tokens(self, raw):
        assert coerce(raw, BOOLEAN)[1]

    def test_string_accepts_numbers(self):
        assert coerce(5, STRING) == ("5", [])
        assert coerce(["x"], STRING)[1]

    def test_optional_accepts_null(self):
        assert coerce(None, ParameterSchema(type="integer", optional=True)) == (None, [])

    def test_any_passes_through(self):
        marker = object()
        value, issues = coerce(marker, ParameterSchema())
        assert value is marker
        assert issues == []


class TestContainers:
    """Arrays and objects."""

    def test_array_items_are_coerced(self):
        schema = ParameterSchema(type="array", items=NUMBER)
        assert coerce(["1", 2, "3.5"], schema) == ([1, 2, 3.5], [])

    def test_array_and_object_from_json_text(self):
        array = ParameterSchema(type="array", items=INTEGER)
        assert coerce("[1, 2]", array) == ([1, 2], [])
        value, issues = coerce('{"a": "1"}', _object(a=NUMBER))
        assert value == {"a": 1}
        assert issues == []
        assert coerce("[1, 2", array)[1]

    def test_defaults_fill_missing_fields(self):
        default = ["x"]
        schema = _object(tags=ParameterSchema(type="array", items=STRING, optional=True, default=default))
        value, issues = coerce({}, schema)
        assert value == {"tags": ["x"]}
        assert value["tags"] is not default

    def test_unknown_keys_pass_through(self):
        value, issues = coerce({"a": "1", "extra": True}, _object(a=NUMBER))
        assert value == {"a": 1, "extra": True}

    def test_every_bad_field_is_reported(self):
        schema = _object(
            a=NUMBER,
            b=NUMBER,
            flag=BOOLEAN,
            nested=_object(x=INTEGER),
        )
        _, issues = coerce({"a": "abc", "flag": "maybe", "nested": {"x": "y"}}, schema)
        assert sorted(i.path for i in issues) == ["a", "b", "flag", "nested.x"]
        missing = next(i for i in issues if i.path == "b")
        assert missing.message == "required field is missing"

    def test_array_paths(self):
        schema = _object(values=ParameterSchema(type="array", items=NUMBER))
        _, issues = coerce({"values": [1, "x", 3, "y"]}, schema)
        assert [i.path for i in issues] == ["values[1]", "values[3]"]


class TestConstraints:
    """Bounds run on the coerced value."""

    def test_bounds_after_coercion(self):
        schema = ParameterSchema(type="number", minimum=1, maximum=10)
        assert coerce("5", schema) == (5, [])
        assert coerce("11", schema)[1][0].message == "must be <= 10"
        assert coerce("0", schema)[1][0].message == "must be >= 1"

    def test_exclusive_minimum(self):
        schema = ParameterSchema(type="number", exclusive_minimum=0)
        assert coerce("0", schema)[1][0].message == "must be > 0"
        assert coerce("0.1", schema) == (0.1, [])

    def test_length_pattern_and_enum(self):
        schema = ParameterSchema(type="string", min_length=2, max_length=4, pattern="^[a-z]+$")
        assert coerce("ab", schema) == ("ab", [])
        assert len(coerce("A", schema)[1]) == 2
        enum = ParameterSchema(type="string", enum=("short", "long"))
        assert coerce("medium", enum)[1][0].message.startswith("must be one of")

    def test_invalid_pattern_is_an_issue(self):
        schema = _object(s=ParameterSchema(type="string", pattern="[unclosed"))
        value, issues = coerce({"s": "x"}, schema)
        assert [i.path for i in issues] == ["s"]
        assert issues[0].message.startswith("invalid pattern")

    def test_item_count(self):
        schema = ParameterSchema(type="array", items=NUMBER, min_items=1)
        assert coerce([], schema)[1][0].message == "must have at least 1 items"

    def test_constraints_skipped_when_type_fails(self):
        schema = ParameterSchema(type="number", minimum=1)
        _, issues = coerce("abc", schema)
        assert len(issues) == 1


class TestIdempotence:
    """Coercing an already-coerced value changes nothing."""

    @pytest.mark.parametrize("raw,schema", [
        ({"a": "1", "b": "2.5"}, _object(a=NUMBER, b=NUMBER)),
        ({"flag": " true "}, _object(flag=BOOLEAN)),
        ('["3", "4"]', ParameterSchema(type="array", items=INTEGER)),
        ({"n": {"x": "7"}}, _object(n=_object(x=INTEGER))),
    ])
    def test_twice_equals_once(self, raw, schema):
        once, issues = coerce(raw, schema)
        assert issues == []
        assert coerce(once, schema) == (once, [])


class TestCoerceOrRaise:
    """Test coerce_or_raise function."""

    def test_raises_with_all_issues(self):
        with pytest.raises(CoercionError) as excinfo:
            coerce_or_raise({"a": "x"}, _object(a=NUMBER, b=NUMBER))
        assert len(excinfo.value.issues) == 2
        assert "Invalid parameters" in str(excinfo.value)
