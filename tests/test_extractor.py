"""Tests for literal extraction, scanning and static/dynamic classification."""

import ast
import textwrap

import pytest

from interface_mcp.compiler.classifier import classify
from interface_mcp.compiler.errors import DiagnosticCode
from interface_mcp.compiler.extractor import (
    extract_members,
    literal_annotation_value,
    reduce_literal,
)
from interface_mcp.compiler.main_compiler import compile_source
from interface_mcp.compiler.types import UNSET, CapabilityKind


def _expr(source: str) -> ast.AST:
    return ast.parse(source, mode="eval").body


def _class(source: str) -> ast.ClassDef:
    return ast.parse(textwrap.dedent(source)).body[0]


class TestReduceLiteral:
    """Test reduce_literal function."""

    def test_scalars(self):
        assert reduce_literal(_expr("'x'")) == "x"
        assert reduce_literal(_expr("3")) == 3
        assert reduce_literal(_expr("2.5")) == 2.5
        assert reduce_literal(_expr("True")) is True
        assert reduce_literal(_expr("None")) is None

    def test_signed_numbers(self):
        assert reduce_literal(_expr("-3")) == -3
        assert reduce_literal(_expr("+1.5")) == 1.5
        assert reduce_literal(_expr("-True")) is UNSET

    def test_nested_containers(self):
        value = reduce_literal(_expr("{'a': [1, -2, {'b': None}], 'c': (1, 2)}"))
        assert value == {"a": [1, -2, {"b": None}], "c": [1, 2]}

    def test_one_bad_child_poisons_parent(self):
        assert reduce_literal(_expr("{'a': 1, 'b': some_name}")) is UNSET
        assert reduce_literal(_expr("[1, 2, f(3)]")) is UNSET
        assert reduce_literal(_expr("{'a': {'deep': x.y}}")) is UNSET

    def test_non_string_keys_and_spread_are_not_literal(self):
        assert reduce_literal(_expr("{1: 'a'}")) is UNSET
        assert reduce_literal(_expr("{**other}")) is UNSET

    def test_literal_annotation(self):
        assert literal_annotation_value(_expr("Literal['x']")) == "x"
        assert literal_annotation_value(_expr("typing.Literal[3]")) == 3
        assert literal_annotation_value(_expr("Literal['a', 'b']")) is UNSET
        assert literal_annotation_value(_expr("str")) is UNSET


class TestExtractMembers:
    """Test extract_members function."""

    def test_assignment_and_literal_annotation(self):
        members = extract_members(_class('''
            class T(Tool):
                name = "add"
                title: Literal["Adder"]
                data: ServerStats
        '''))
        assert members["name"].literal and members["name"].value == "add"
        assert members["title"].literal and members["title"].value == "Adder"
        assert not members["data"].literal
        assert members["data"].type_signature == "ServerStats"

    def test_methods_and_nested_classes(self):
        members = extract_members(_class('''
            class T(Tool):
                class Params:
                    a: int
                def hidden(ctx):
                    return False
        '''))
        assert isinstance(members["Params"].node, ast.ClassDef)
        assert members["hidden"].type_signature == "callable"


class TestClassify:
    """Test classify function."""

    def _classify(self, kind, source):
        return classify(kind, extract_members(_class(source)))

    def test_literal_resource_is_static(self):
        verdict = self._classify(CapabilityKind.RESOURCE, '''
            class R(Resource):
                uri = "info://server"
                data = {"version": "1.0.0"}
        ''')
        assert verdict.dynamic is False

    def test_nested_non_literal_forces_dynamic(self):
        verdict = self._classify(CapabilityKind.RESOURCE, '''
            class R(Resource):
                uri = "info://server"
                data = {"version": "1.0.0", "uptime": {"seconds": now()}}
        ''')
        assert verdict.dynamic is True

    def test_missing_data_is_dynamic(self):
        verdict = self._classify(CapabilityKind.RESOURCE, '''
            class R(Resource):
                uri = "info://server"
        ''')
        assert verdict.dynamic is True

    def test_explicit_dynamic_beats_extraction(self):
        verdict = self._classify(CapabilityKind.RESOURCE, '''
            class R(Resource):
                uri = "info://server"
                data = {"version": "1.0.0"}
                dynamic = True
        ''')
        assert verdict.dynamic is True
        assert verdict.explicit is True
        assert verdict.ambiguity is not None

    def test_explicit_static_with_non_literal_data(self):
        verdict = self._classify(CapabilityKind.RESOURCE, '''
            class R(Resource):
                uri = "info://server"
                data = load()
                dynamic = False
        ''')
        assert verdict.dynamic is False
        assert verdict.ambiguity is not None

    def test_prompt_and_elicitation(self):
        assert self._classify(CapabilityKind.PROMPT, '''
            class P(Prompt):
                name = "p"
                template = "Hi {name}"
        ''').dynamic is False
        assert self._classify(CapabilityKind.PROMPT, '''
            class P(Prompt):
                name = "p"
        ''').dynamic is True
        assert self._classify(CapabilityKind.ELICITATION, '''
            class E(Elicitation):
                name = "e"
                prompt = "Sure?"
        ''').dynamic is False

    def test_tools_are_always_dynamic(self):
        verdict = self._classify(CapabilityKind.TOOL, '''
            class T(Tool):
                name = "t"
                dynamic = False
        ''')
        assert verdict.dynamic is True
        assert verdict.ambiguity is not None

    def test_deterministic(self):
        source = '''
            class R(Resource):
                uri = "a://b"
                data = [1, 2, x]
        '''
        assert {self._classify(CapabilityKind.RESOURCE, source) for _ in range(5)} == {
            self._classify(CapabilityKind.RESOURCE, source)
        }


class TestScanner:
    """Marker recognition and declaration-level errors through compile_source."""

    def test_marker_matched_by_final_name(self):
        compiled = compile_source(textwrap.dedent('''
            import interface_mcp.markers as m

            class A(m.Resource):
                uri = "a://1"
                data = 1

            class B(IResource):
                uri = "b://1"
                data = 2

            class C(Unrelated):
                uri = "c://1"
                data = 3
        '''))
        assert sorted(compiled.table.of_kind("resource")) == ["a://1", "b://1"]

    def test_docstring_is_description_fallback(self):
        compiled = compile_source(textwrap.dedent('''
            class Info(Resource):
                """Server facts."""
                uri = "info://server"
                data = {}
        '''))
        assert compiled.table.get("resource", "info://server").declaration.description == "Server facts."

    def test_missing_uri_is_declaration_error(self):
        compiled = compile_source(textwrap.dedent('''
            class Info(Resource):
                data = {}
        '''))
        assert not compiled.ok
        error = compiled.errors[0]
        assert error.code is DiagnosticCode.DECLARATION
        assert error.capability_name == "Info"
        assert error.field_path == "uri"

    def test_first_server_wins(self):
        compiled = compile_source(textwrap.dedent('''
            class One(Server):
                name = "one"

            class Two(Server):
                name = "two"
        '''))
        assert compiled.table.server.name == "one"
        assert [w.code for w in compiled.warnings] == [DiagnosticCode.DUPLICATE_SERVER]

    def test_second_server_methods_still_link(self):
        compiled = compile_source(textwrap.dedent('''
            class One(Server):
                name = "one"

            class Two(Server):
                name = "two"

                def ping(self):
                    return "pong"

            class Ping(Tool):
                name = "ping"
        '''))
        assert compiled.ok
        assert compiled.table.get(CapabilityKind.TOOL, "ping").binding.owner == "Two"
        assert "still link" in compiled.warnings[0].message

    @pytest.mark.parametrize("source,field", [
        ('class Ask(Elicitation):\n    name = "ask"\n    prompt = MESSAGE\n    dynamic = False\n', "prompt"),
        ('class Ask(Elicitation):\n    name = "ask"\n    dynamic = False\n', "prompt"),
        ('class Greet(Prompt):\n    name = "greet"\n    template = build()\n    dynamic = False\n', "template"),
    ])
    def test_explicit_static_text_must_be_literal(self, source, field):
        compiled = compile_source(source)
        assert not compiled.ok
        error = compiled.errors[0]
        assert error.code is DiagnosticCode.DECLARATION
        assert error.field_path == field
        assert "dynamic = False" in error.message

    def test_server_from_dict_literal(self):
        compiled = compile_source('server: Server = {"name": "dict-server", "version": "2.0.0"}\n')
        assert compiled.table.server.name == "dict-server"
        assert compiled.table.server.version == "2.0.0"

    def test_syntax_error_is_reported(self):
        compiled = compile_source("class Broken(Tool:\n", filename="broken.py")
        assert not compiled.ok
        assert compiled.errors[0].code is DiagnosticCode.SYNTAX

    @pytest.mark.parametrize("value", ['"yes"', "3"])
    def test_hidden_must_be_bool_or_predicate(self, value):
        compiled = compile_source(textwrap.dedent(f'''
            class Info(Resource):
                uri = "info://server"
                data = {{}}
                hidden = {value}
        '''))
        assert compiled.errors[0].field_path == "hidden"
