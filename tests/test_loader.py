"""Tests for module loading and runtime binding resolution."""

import asyncio
import textwrap

import pytest

from interface_mcp.compiler.errors import CompilationError, DiagnosticCode
from interface_mcp.runtime.loader import load_module_from_path, load_server


class TestLoadModuleFromPath:
    """Test load_module_from_path function."""

    def test_loads_file_with_unique_name(self, tmp_path):
        path = tmp_path / "decls.py"
        path.write_text("VALUE = 41 + 1\n")
        module, name = load_module_from_path(path)
        assert module.VALUE == 42
        assert name.startswith("_dynmod_decls_")

    def test_dotted_name_under_root(self, tmp_path):
        pkg = tmp_path / "pkg"
        pkg.mkdir()
        (pkg / "__init__.py").write_text("")
        (pkg / "decls.py").write_text("X = 1\n")
        module, name = load_module_from_path(pkg / "decls.py", sys_path_root=tmp_path)
        assert name == "pkg.decls"

    def test_missing_path(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_module_from_path(tmp_path / "nope.py")

    def test_unsupported_path(self, tmp_path):
        path = tmp_path / "data.txt"
        path.write_text("")
        with pytest.raises(ImportError):
            load_module_from_path(path)


class TestLoadServer:
    """Test load_server function."""

    def test_broken_module_fails_with_every_link_error(self, fixtures_dir):
        with pytest.raises(CompilationError) as excinfo:
            load_server(fixtures_dir / "broken_links.py")
        assert sorted(d.capability_name for d in excinfo.value.link_errors) == [
            "add_numbers", "multiply_numbers", "welcome",
        ]
        assert "rename it to 'addNumbers'" in str(excinfo.value)

    def test_class_based_implementations(self, fixtures_dir):
        notes = load_server(fixtures_dir / "notes.py")
        assert asyncio.run(notes.execute("add_note", {"text": "one"})).content == 1
        assert asyncio.run(notes.execute("add_note", {"text": 2})).content == 2
        assert asyncio.run(notes.execute("list_notes")).content == ["one", "2"]

    def test_server_flag_flattens_routers(self, fixtures_dir):
        notes = load_server(fixtures_dir / "notes.py")
        assert notes.flatten_routers() is True

    def test_explicit_dynamic_resource_uses_data_object(self, fixtures_dir):
        notes = load_server(fixtures_dir / "notes.py")
        assert asyncio.run(notes.read_resource("notes://count")) == {"count": 0}

    def test_runtime_binding_shape_is_checked(self, tmp_path):
        path = tmp_path / "bad_shape.py"
        path.write_text(textwrap.dedent('''
            from interface_mcp.markers import Tool

            class Ping(Tool):
                name = "ping"

            ping = 42
        '''))
        with pytest.raises(CompilationError) as excinfo:
            load_server(path)
        error = excinfo.value.diagnostics[0]
        assert error.code is DiagnosticCode.LINK
        assert "not callable" in error.message

    def test_unimportable_module_raises(self, tmp_path):
        path = tmp_path / "explodes.py"
        path.write_text(textwrap.dedent('''
            from interface_mcp.markers import Resource

            class Info(Resource):
                uri = "info://x"
                data = {}

            raise RuntimeError("boom at import")
        '''))
        with pytest.raises(RuntimeError, match="boom at import"):
            load_server(path)

    def test_hidden_predicate_resolved_at_load(self, tmp_path):
        path = tmp_path / "hidden_tools.py"
        path.write_text(textwrap.dedent('''
            from interface_mcp.markers import Tool

            class Secret(Tool):
                name = "secret"

                @staticmethod
                def hidden(ctx):
                    return True

            class Open(Tool):
                name = "open"
                hidden = False

            def secret():
                return 1

            def open():
                return 2
        '''))
        dispatcher = load_server(path)
        tools = asyncio.run(dispatcher.list_capabilities("tool"))
        assert [t["name"] for t in tools] == ["open"]
