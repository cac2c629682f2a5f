""" interface_server.py : FastMCP server generated from a declaration module.
    Compiles the module's Tool / Prompt / Resource / Router declarations,
        links them to their implementations and registers one FastMCP
        wrapper per capability that routes into the Dispatcher.
    Based on https://gofastmcp.com/servers/server
"""

import argparse
import dataclasses
import inspect
import json
import logging
import sys
from typing import Annotated, Any, Dict, List, Literal, Optional

from fastmcp import Context, FastMCP
from fastmcp.exceptions import ToolError
from fastmcp.server.middleware import Middleware, MiddlewareContext
from pydantic import Field, create_model

from interface_mcp.compiler.errors import CapabilityNotFound, CompilationError
from interface_mcp.compiler.main_compiler import compile_file
from interface_mcp.compiler.types import UNSET, CapabilityEntry, CapabilityKind, ParameterSchema
from interface_mcp.runtime.context import ExecutionContext
from interface_mcp.runtime.dispatcher import Dispatcher
from interface_mcp.runtime.loader import load_server
from interface_mcp.utils.logging_config import setup_logging
from interface_mcp.utils.settings import Settings, load_settings

logger = logging.getLogger(__name__)

_PY_TYPES = {
    "string": str,
    "integer": int,
    "number": float,
    "boolean": bool,
    "object": Dict[str, Any],
    "null": type(None),
}


# -----------------------------------------
# Schema -> Python annotations
# -----------------------------------------

def python_type(schema: ParameterSchema) -> Any:
    """ Annotation FastMCP/pydantic will turn back into (roughly) `schema`. """
    if schema.enum:
        hint: Any = Literal[tuple(schema.enum)]
    elif schema.type == "array":
        hint = List[python_type(schema.items)] if schema.items is not None else List[Any]
    else:
        hint = _PY_TYPES.get(schema.type, Any)
    if schema.optional and hint is not Any:
        hint = Optional[hint]
    return hint


def synthesize_signature(schema: ParameterSchema, with_context: bool = True) -> inspect.Signature:
    """ Keyword-only signature mirroring an object schema.

        Required properties have no default; optional ones default to their
        declared default, or None. Descriptions ride along in pydantic Field.
    """
    params = []
    for name, prop in (schema.properties or {}).items():
        hint = python_type(prop)
        if prop.description:
            hint = Annotated[hint, Field(description=prop.description)]
        if prop.optional or prop.default is not UNSET:
            default = None if prop.default is UNSET else prop.default
        else:
            default = inspect.Parameter.empty
        params.append(inspect.Parameter(name, kind=inspect.Parameter.KEYWORD_ONLY,
                                        default=default, annotation=hint))
    if with_context:
        params.append(inspect.Parameter("ctx", kind=inspect.Parameter.KEYWORD_ONLY,
                                        default=None, annotation=Context))
    return inspect.Signature(params)


def _apply_signature(wrapper, name: str, sig: inspect.Signature) -> None:
    wrapper.__name__ = name.replace("-", "_").replace(".", "_")
    wrapper.__signature__ = sig
    wrapper.__annotations__ = {p.name: p.annotation for p in sig.parameters.values()}


def _drop_unset(kwargs: Dict[str, Any], schema: ParameterSchema) -> Dict[str, Any]:
    """ Optional params the caller left out arrive as None; let them stay missing. """
    props = schema.properties or {}
    return {
        k: v for k, v in kwargs.items()
        if not (v is None and k in props and props[k].optional and props[k].default is UNSET)
    }


# -----------------------------------------
# FastMCP Context -> ExecutionContext
# -----------------------------------------

_ELICIT_TYPES = {"string": str, "integer": int, "number": float, "boolean": bool}


def elicitation_model(schema: Dict[str, Any]):
    """ Flat pydantic model for an elicitation's JSON schema.

        Elicitation forms only carry primitive fields; anything else is
        asked for as a string and coerced afterwards by the Dispatcher.
    """
    required = set(schema.get("required", []))
    fields = {}
    for name, prop in schema.get("properties", {}).items():
        if prop.get("enum"):
            hint: Any = Literal[tuple(prop["enum"])]
        else:
            hint = _ELICIT_TYPES.get(prop.get("type"), str)
        if name in required:
            fields[name] = (hint, Field(..., description=prop.get("description")))
        else:
            fields[name] = (Optional[hint], Field(prop.get("default"), description=prop.get("description")))
    return create_model("ElicitedInput", **fields)


def execution_context(ctx: Optional[Context]) -> ExecutionContext:
    """ Bridge FastMCP's per-request Context into an ExecutionContext. """
    if ctx is None:
        return ExecutionContext()

    async def _elicit(message: str, schema: Optional[Dict[str, Any]] = None):
        result = await ctx.elicit(message, response_type=elicitation_model(schema or {}))
        if result.action != "accept":
            logger.info("Elicitation %r ended with %s", message, result.action)
            return None
        data = result.data
        return data.model_dump() if hasattr(data, "model_dump") else data

    async def _progress(progress: float, total: Optional[float] = None, message: Optional[str] = None):
        await ctx.report_progress(progress=progress, total=total, message=message)

    async def _roots():
        result = await ctx.session.list_roots()
        return [str(root.uri) for root in result.roots]

    # no session yet during initialize
    try:
        session_id = ctx.session_id
    except RuntimeError:
        session_id = None

    # sampling is left to the client runtime; sample_fn stays unset
    return ExecutionContext(
        elicit_fn=_elicit,
        progress_fn=_progress,
        roots_fn=_roots,
        session_id=session_id,
        metadata={"client_id": ctx.client_id},
    )


# -----------------------------------------
# Wrappers
# -----------------------------------------

def _make_tool_wrapper(dispatcher: Dispatcher, entry: CapabilityEntry):
    """ FastMCP tool callable for one tool (or router) entry.

        Registration time: the wrapper gets a synthesized signature so FastMCP
            exposes the compiled input schema.
        Call time: kwargs go through Dispatcher.execute, so coercion and the
            invocation convention are the same as for any other caller.
    """
    schema = entry.schema

    async def wrapper(**kwargs):
        ctx = kwargs.pop("ctx", None)
        result = await dispatcher.execute(entry.key, _drop_unset(kwargs, schema), execution_context(ctx))
        if result.is_error:
            raise ToolError("Invalid parameters: " + "; ".join(str(e) for e in result.errors))
        return result.content

    _apply_signature(wrapper, entry.key, synthesize_signature(schema))
    return wrapper


def _make_prompt_wrapper(dispatcher: Dispatcher, entry: CapabilityEntry):
    schema = entry.schema

    async def wrapper(**kwargs):
        ctx = kwargs.pop("ctx", None)
        return await dispatcher.render_prompt(entry.key, _drop_unset(kwargs, schema), execution_context(ctx))

    _apply_signature(wrapper, entry.key, synthesize_signature(schema))
    return wrapper


def _make_resource_reader(dispatcher: Dispatcher, entry: CapabilityEntry):
    async def reader(ctx: Context = None):
        data = await dispatcher.read_resource(entry.key, execution_context(ctx))
        if isinstance(data, (str, bytes)):
            return data
        return json.dumps(data)

    reader.__name__ = "read_" + "".join(c if c.isalnum() else "_" for c in entry.key)
    return reader


def completion_handler(dispatcher: Dispatcher):
    """ Server-level `completion/complete` handler routing into Dispatcher.complete.

        A prompt reference completes the named argument; a resource template
        reference completes its uri. References nothing declares get no
        suggestions.
    """

    async def handler(ref, argument, context=None):
        uri = getattr(ref, "uri", None)
        if uri is not None:
            target, ref_type = str(uri), "resource"
        else:
            target, ref_type = argument.name, "argument"
        arguments = getattr(context, "arguments", None) if context is not None else None
        try:
            result = await dispatcher.complete(target, argument.value or "", ref_type=ref_type,
                                               arguments=arguments)
        except CapabilityNotFound:
            logger.debug("No completion declared for %s '%s'", ref_type, target)
            return None
        return result["values"]

    return handler


# -----------------------------------------
# Visibility
# -----------------------------------------

class VisibilityMiddleware(Middleware):
    """ Filters list_* results down to what the Dispatcher says is visible.

        Router members stay registered (and callable) but are not listed
        unless routers are flattened; hidden predicates run per listing.
    """

    def __init__(self, dispatcher: Dispatcher):
        self.dispatcher = dispatcher

    async def _visible(self, kind: CapabilityKind, context: MiddlewareContext) -> set:
        ctx = execution_context(getattr(context, "fastmcp_context", None))
        return {e.key for e in await self.dispatcher.visible_entries(kind, ctx)}

    async def on_list_tools(self, context: MiddlewareContext, call_next):
        tools = await call_next(context)
        visible = await self._visible(CapabilityKind.TOOL, context)
        return [t for t in tools if t.name in visible]

    async def on_list_prompts(self, context: MiddlewareContext, call_next):
        prompts = await call_next(context)
        visible = await self._visible(CapabilityKind.PROMPT, context)
        return [p for p in prompts if p.name in visible]

    async def on_list_resources(self, context: MiddlewareContext, call_next):
        resources = await call_next(context)
        visible = await self._visible(CapabilityKind.RESOURCE, context)
        return [r for r in resources if str(r.uri) in visible]


# -----------------------------------------
# Server assembly
# -----------------------------------------

def build_server(dispatcher: Dispatcher) -> FastMCP:
    """ Register every compiled capability on a fresh FastMCP instance. """
    server = dispatcher.server
    mcp = FastMCP(
        name=server.name if server else "interface-mcp",
        instructions=server.description if server and server.description else None,
        version=server.version if server else None,
        on_duplicate="error",
    )
    table = dispatcher.table

    for entry in table.of_kind(CapabilityKind.TOOL).values():
        tags = {"router:" + entry.router} if entry.router else None
        mcp.tool(name=entry.key, description=entry.declaration.description or None,
                 tags=tags)(_make_tool_wrapper(dispatcher, entry))
    for entry in table.of_kind(CapabilityKind.ROUTER).values():
        mcp.tool(name=entry.key, description=entry.declaration.description or None,
                 tags={"router"})(_make_tool_wrapper(dispatcher, entry))
    logger.info("✅ Tools registered.")

    for entry in table.of_kind(CapabilityKind.PROMPT).values():
        mcp.prompt(name=entry.key, description=entry.declaration.description or None)(
            _make_prompt_wrapper(dispatcher, entry))
    logger.info("✅ Prompts registered.")

    for entry in table.of_kind(CapabilityKind.RESOURCE).values():
        decl = entry.declaration
        mcp.resource(entry.key, name=decl.metadata.get("name") or entry.key,
                     description=decl.description or None,
                     mime_type=decl.mime_type)(_make_resource_reader(dispatcher, entry))
    logger.info("✅ Resources registered.")

    for entry in table.of_kind(CapabilityKind.SUBSCRIPTION).values():
        logger.info("Subscription declared for %s (served through the dispatcher)", entry.key)

    if table.of_kind(CapabilityKind.COMPLETION):
        mcp.add_completion_handler(completion_handler(dispatcher))
        logger.info("✅ Completions registered.")

    mcp.add_middleware(VisibilityMiddleware(dispatcher))
    return mcp


def launch_server(module: str, settings: Settings, transport: str = "http"):
    """ Compile + load `module`, then run the FastMCP server until interrupted. """
    dispatcher = load_server(module, settings)
    mcp = build_server(dispatcher)
    logger.info("✅ interface server for %s started.", module)
    if transport == "stdio":
        mcp.run()
    else:
        mcp.run(transport=transport, host=settings.host, port=settings.port)


def check_module(module: str) -> int:
    """ Dry run: compile only (nothing is imported), print diagnostics as JSON. """
    compiled = compile_file(module)
    print(json.dumps(compiled.report(), indent=2))
    return 0 if compiled.ok else 1


# -----------------------------
# CLI
# -----------------------------
def port_type(value: str) -> int:
    """ Custom argparse type that validates a TCP port number. """
    try:
        port = int(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"Port must be an integer (got {value!r})") from e
    if not 1 <= port <= 65535:
        raise argparse.ArgumentTypeError(f"Port number must be between 1 and 65535 (got {port})")
    return port


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve a declaration module as an MCP server.")
    parser.add_argument("--module", "-m", required=True,
                        help="Path to the declaration module (.py).")
    parser.add_argument("--host", type=str, default=None,
                        help="Host name or IP address (default from settings, 127.0.0.1).")
    parser.add_argument("--port", type=port_type, default=None,
                        help="TCP port to bind (default from settings, 8085).")
    parser.add_argument("--transport", choices=["http", "sse", "stdio"], default="http",
                        help="MCP transport (default http).")
    parser.add_argument("--flatten-routers", action="store_true", default=None,
                        help="List router member tools directly.")
    parser.add_argument("--check", action="store_true",
                        help="Compile only and print diagnostics as JSON.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """ Main entry point: parse arguments, then check or serve. """
    args = build_parser().parse_args(argv)
    settings = load_settings()
    # stdio carries the protocol on stdout
    setup_logging(level=settings.log_level,
                  stream=sys.stderr if args.transport == "stdio" or args.check else None)

    if args.check:
        return check_module(args.module)

    overrides = {k: v for k, v in (("host", args.host), ("port", args.port),
                                   ("flatten_routers", args.flatten_routers)) if v is not None}
    if overrides:
        settings = dataclasses.replace(settings, **overrides)

    try:
        launch_server(args.module, settings, args.transport)
    except CompilationError as e:
        logger.error("❌ %s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
