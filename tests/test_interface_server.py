"""Tests for the FastMCP adapter and the command line."""

import asyncio
import inspect
import json
from types import MappingProxyType, SimpleNamespace
from typing import Any, Dict, List, Optional, get_args

import pytest
from fastmcp import Client

from interface_mcp.compiler.types import ParameterSchema
from interface_mcp.mcp_servers.interface_server import (
    build_parser,
    build_server,
    completion_handler,
    elicitation_model,
    main,
    port_type,
    python_type,
    synthesize_signature,
)
from interface_mcp.runtime.loader import load_server


class TestPythonType:
    """Test python_type function."""

    def test_scalars(self):
        assert python_type(ParameterSchema(type="string")) is str
        assert python_type(ParameterSchema(type="number")) is float
        assert python_type(ParameterSchema(type="object")) == Dict[str, Any]
        assert python_type(ParameterSchema()) is Any

    def test_optional_array_and_enum(self):
        assert python_type(ParameterSchema(type="integer", optional=True)) == Optional[int]
        assert python_type(ParameterSchema(type="array", items=ParameterSchema(type="boolean"))) == List[bool]
        hint = python_type(ParameterSchema(type="string", enum=("a", "b")))
        assert get_args(hint) == ("a", "b")


class TestSynthesizeSignature:
    """Test synthesize_signature function."""

    def test_required_optional_and_context(self):
        schema = ParameterSchema(type="object", properties=MappingProxyType({
            "a": ParameterSchema(type="number"),
            "style": ParameterSchema(type="string", optional=True, default="short"),
            "limit": ParameterSchema(type="integer", optional=True),
        }))
        sig = synthesize_signature(schema)
        params = sig.parameters
        assert list(params) == ["a", "style", "limit", "ctx"]
        assert params["a"].default is inspect.Parameter.empty
        assert params["style"].default == "short"
        assert params["limit"].default is None
        assert all(p.kind is inspect.Parameter.KEYWORD_ONLY for p in params.values())

    def test_without_context(self):
        sig = synthesize_signature(ParameterSchema(type="object"), with_context=False)
        assert list(sig.parameters) == []


class TestElicitationModel:
    """Test elicitation_model function."""

    def test_fields(self):
        model = elicitation_model({
            "type": "object",
            "properties": {
                "confirm": {"type": "boolean"},
                "mode": {"type": "string", "enum": ["fast", "safe"]},
                "note": {"type": "string"},
            },
            "required": ["confirm"],
        })
        fields = model.model_fields
        assert fields["confirm"].is_required()
        assert not fields["note"].is_required()
        assert model(confirm=True, mode="fast").model_dump() == {"confirm": True, "mode": "fast", "note": None}


class TestCli:
    """Argument parsing and --check."""

    def test_port_type(self):
        assert port_type("8085") == 8085
        with pytest.raises(Exception):
            port_type("70000")
        with pytest.raises(Exception):
            port_type("http")

    def test_parser_defaults(self):
        args = build_parser().parse_args(["-m", "decls.py"])
        assert args.module == "decls.py"
        assert args.transport == "http"
        assert args.flatten_routers is None
        assert args.check is False

    def test_module_is_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_check_clean_module(self, calculator_path, capsys, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        assert main(["--module", str(calculator_path), "--check"]) == 0
        report = json.loads(capsys.readouterr().out)
        assert report["ok"] is True
        assert "math_tools" in report["capabilities"]["router"]

    def test_check_broken_module(self, fixtures_dir, capsys, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        assert main(["--module", str(fixtures_dir / "broken_links.py"), "--check"]) == 1
        report = json.loads(capsys.readouterr().out)
        assert report["ok"] is False
        assert {d["code"] for d in report["diagnostics"]} == {"LinkError"}


class TestBuildServer:
    """The generated FastMCP server, driven through an in-memory client."""

    def test_listing_and_calls(self, calculator_path):
        mcp = build_server(load_server(calculator_path))

        async def scenario():
            async with Client(mcp) as client:
                tools = await client.list_tools()
                result = await client.call_tool("add_numbers", {"a": 2, "b": 3})
                return [t.name for t in tools], result

        names, result = asyncio.run(scenario())
        assert sorted(names) == ["add_numbers", "math_tools"]
        assert result.content[0].text.startswith("5")


class TestCompletionHandler:
    """Test completion_handler function."""

    def test_prompt_argument_and_resource_template(self, cities_path):
        handler = completion_handler(load_server(cities_path))
        prompt_ref = SimpleNamespace(type="ref/prompt", name="plan_trip")
        resource_ref = SimpleNamespace(type="ref/resource", uri="weather://{city}")

        assert asyncio.run(handler(prompt_ref, SimpleNamespace(name="city", value="new"))) == [
            "New York", "New Orleans", "Newark",
        ]
        assert asyncio.run(handler(resource_ref, SimpleNamespace(name="city", value="lon"))) == [
            "weather://London",
        ]

    def test_undeclared_argument_gets_nothing(self, cities_path):
        handler = completion_handler(load_server(cities_path))
        ref = SimpleNamespace(type="ref/prompt", name="plan_trip")
        assert asyncio.run(handler(ref, SimpleNamespace(name="days", value="3"))) is None

    def test_registered_only_when_declared(self, cities_path, calculator_path):
        assert build_server(load_server(cities_path))._completion_handler is not None
        assert build_server(load_server(calculator_path))._completion_handler is None
