# runtime/loader.py
"""
Import a declaration module and resolve its bindings to runtime objects.

Compilation never imports the module; only `load_server` does, after the
compile pass came back clean.
"""

import sys
import hashlib
import importlib.util
import logging
from pathlib import Path
from types import ModuleType
from typing import Any, Dict, List, Optional, Tuple

from interface_mcp.compiler.errors import CompilationError, Diagnostic, LinkError
from interface_mcp.compiler.main_compiler import CompiledModule, compile_file
from interface_mcp.compiler.types import (
    BindingShape,
    BindingSource,
    CapabilityEntry,
    CapabilityKind,
    CapabilityTable,
    ImplementationBinding,
)
from interface_mcp.runtime.dispatcher import Dispatcher, ImplKey
from interface_mcp.runtime.hidden import HiddenSpec
from interface_mcp.utils.settings import Settings

logger = logging.getLogger(__name__)


def load_module_from_path(
    path: str | Path,
    *,
    sys_path_root: str | Path | None = None,
    module_name: str | None = None,
    add_sys_path: bool = True,
) -> tuple[ModuleType, str]:
    """
    Load a Python module or package from an arbitrary filesystem path.

    Args:
        path: A .py file, or a package directory with __init__.py.
        sys_path_root: If provided, the dotted module name is computed
                       relative to this root, and the root is put on sys.path.
                       Defaults to the module's own directory so sibling
                       imports work.
        module_name: Force the dotted module name to this value (optional).
        add_sys_path: If True, prepend the root to sys.path if missing.

    Returns:
        (module_object, dotted_module_name)
    """
    p = Path(path).resolve()
    if not p.exists():
        raise FileNotFoundError(p)

    root = Path(sys_path_root).resolve() if sys_path_root else p.parent
    if add_sys_path and str(root) not in sys.path:
        sys.path.insert(0, str(root))

    if module_name is None and sys_path_root:
        try:
            rel = p.relative_to(root)
            parts = list(rel.parts)
            if p.is_file():
                parts[-1] = p.stem
            module_name = ".".join(parts)
        except ValueError:
            # not under sys_path_root; fall back to a unique name
            pass

    if module_name is None:
        h = hashlib.sha1(str(p).encode("utf-8")).hexdigest()[:10]
        module_name = f"_dynpkg_{p.name}_{h}" if p.is_dir() else f"_dynmod_{p.stem}_{h}"

    if p.is_dir():
        target = p / "__init__.py"
        if not target.exists():
            raise ImportError(f"Unsupported path type: {p} (no __init__.py)")
    elif p.suffix == ".py":
        target = p
    else:
        raise ImportError(f"Unsupported path type: {p}")

    spec = importlib.util.spec_from_file_location(module_name, target)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot create spec for module at {target}")
    mod = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = mod
    try:
        spec.loader.exec_module(mod)
    except Exception:
        sys.modules.pop(module_name, None)
        raise
    return mod, module_name


class BindingResolver:
    """
    Turns ImplementationBindings into live objects from an imported module.

    Class members resolve against a module-level instance of the owner
    class when there is one; otherwise the class is instantiated with no
    arguments, once per class.
    """

    def __init__(self, module: ModuleType):
        self.module = module
        self._instances: Dict[str, Any] = {}

    def _instance_of(self, owner: str) -> Any:
        if owner in self._instances:
            return self._instances[owner]
        cls = getattr(self.module, owner, None)
        if not isinstance(cls, type):
            raise LookupError(f"class '{owner}' not found in module")
        for value in vars(self.module).values():
            if isinstance(value, cls) and not isinstance(value, type):
                self._instances[owner] = value
                return value
        try:
            instance = cls()
        except Exception as e:
            raise LookupError(f"could not instantiate '{owner}' with no arguments: {e}") from e
        self._instances[owner] = instance
        return instance

    def resolve(self, binding: ImplementationBinding) -> Any:
        if binding.source is BindingSource.TOP_LEVEL:
            if not hasattr(self.module, binding.symbol):
                raise LookupError(f"'{binding.symbol}' is not defined at runtime")
            return getattr(self.module, binding.symbol)

        if binding.source is BindingSource.CLASS_MEMBER:
            instance = self._instance_of(binding.owner)
            if not hasattr(instance, binding.symbol):
                raise LookupError(f"'{binding.qualified_name}' is not defined at runtime")
            return getattr(instance, binding.symbol)

        container = getattr(self.module, binding.owner, None)
        if not isinstance(container, dict) or binding.symbol not in container:
            raise LookupError(f"'{binding.qualified_name}' is not defined at runtime")
        return container[binding.symbol]

    def hidden_predicate(self, entry: CapabilityEntry) -> HiddenSpec:
        cls = getattr(self.module, entry.declaration.declared_type, None)
        if cls is None:
            raise LookupError(f"declaration class '{entry.declaration.declared_type}' not found")
        return HiddenSpec.from_value(getattr(cls, "hidden", None))


def _check_shape(entry: CapabilityEntry, obj: Any) -> None:
    binding = entry.binding
    if binding.shape is BindingShape.DATA_OBJECT:
        if not (isinstance(obj, dict) and "data" in obj):
            raise TypeError(f"'{binding.qualified_name}' has no 'data' field")
        return
    if entry.kind in (CapabilityKind.TOOL, CapabilityKind.PROMPT, CapabilityKind.ELICITATION,
                      CapabilityKind.COMPLETION) \
            and not callable(obj):
        raise TypeError(f"'{binding.qualified_name}' is not callable")


def resolve_runtime(
    module: ModuleType,
    table: CapabilityTable,
) -> Tuple[Dict[ImplKey, Any], Dict[ImplKey, HiddenSpec], List[Diagnostic]]:
    """
    Resolve every linked binding and hidden predicate.

    Returns:
        (implementations, hidden specs, link diagnostics). Problems are
        collected, one LinkError per capability.
    """
    resolver = BindingResolver(module)
    implementations: Dict[ImplKey, Any] = {}
    hidden: Dict[ImplKey, HiddenSpec] = {}
    diagnostics: List[Diagnostic] = []

    for entry in table:
        key = (entry.kind, entry.key)
        if entry.binding is not None:
            try:
                obj = resolver.resolve(entry.binding)
                _check_shape(entry, obj)
                implementations[key] = obj
            except (LookupError, TypeError) as e:
                error = LinkError(entry.key, str(e))
                logger.error("❌ %s", error)
                diagnostics.append(error.to_diagnostic("binding"))

        if entry.declaration.hidden_is_predicate:
            try:
                hidden[key] = resolver.hidden_predicate(entry)
            except (LookupError, TypeError) as e:
                error = LinkError(entry.key, f"hidden: {e}")
                logger.error("❌ %s", error)
                diagnostics.append(error.to_diagnostic("hidden"))

    return implementations, hidden, diagnostics


def load_server(
    path: str | Path,
    settings: Optional[Settings] = None,
    *,
    sys_path_root: str | Path | None = None,
) -> Dispatcher:
    """
    Compile, import and link one declaration module.

    Args:
        path: The declaration module (.py).
        settings: Runtime settings; defaults apply when omitted.
        sys_path_root: See load_module_from_path.

    Returns:
        A Dispatcher ready to serve the module.

    Raises:
        CompilationError: any declaration or link error, all reported at once.
    """
    compiled: CompiledModule = compile_file(path)
    compiled.raise_for_errors()

    module, module_name = load_module_from_path(path, sys_path_root=sys_path_root)
    implementations, hidden, errors = resolve_runtime(module, compiled.table)
    if errors:
        raise CompilationError(errors)

    logger.info("✅ Loaded %s (%s) with %d capabilities", path, module_name, len(compiled.table))
    return Dispatcher(compiled.table, implementations, hidden, settings)
