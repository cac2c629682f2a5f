# markers.py
"""
Marker supertypes for declaration modules.

A declaration module subclasses these to flag the role of a class. The
compiler never imports them: recognition is by base-class *name* only, so
`class AddNumbers(Tool)`, `class AddNumbers(markers.Tool)` and
`class AddNumbers(ITool)` are all tools. The classes exist so declaration
modules import and run normally once the dispatcher loads them.

Example:

    class AddNumbers(Tool):
        \"\"\"Add two numbers.\"\"\"
        name = "add_numbers"

        class Params:
            a: Annotated[float, Param(description="First operand")]
            b: float

    def addNumbers(a, b):
        return a + b
"""

from typing import Any, Generic, TypeVar

D = TypeVar("D")


class Tool:
    """A callable capability. Requires `name` and a bound implementation."""


class Prompt:
    """A prompt template (static) or prompt builder (dynamic)."""


class Resource:
    """Data served under a `uri`. Static when `data` is fully literal."""


class Server:
    """Server identity: `name`, `version`, `description`, `flatten_routers`."""


class Router:
    """Groups tools under one entry: `name`, `description`, `tools`."""


class Subscription:
    """Marks a resource `uri` as subscribable, optionally with a handler."""


class Elicitation:
    """A request for user input: `name`, `prompt` and an `Args` shape."""


class Roots:
    """Declares that the server consumes client filesystem roots."""


class Completion:
    """Argument suggestions: `name`, `description` and a `ref` naming the
    prompt argument or resource it completes."""


class Param:
    """Constraint metadata for `Annotated[T, Param(...)]` fields.

    Recognised keywords: description, required, min, max, exclusive_min,
    exclusive_max, min_length, max_length, pattern, enum, min_items,
    max_items, int, default.
    """

    def __init__(self, **constraints: Any) -> None:
        self.constraints = constraints

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v!r}" for k, v in self.constraints.items())
        return f"Param({args})"


class Handler(Generic[D]):
    """Annotation helper: `add: Handler[AddNumbers] = ...` binds by declared type."""


# I-prefixed aliases (ITool, IPrompt, ...) resolve to the same markers.
ITool = Tool
IPrompt = Prompt
IResource = Resource
IServer = Server
IToolRouter = Router
ISubscription = Subscription
IElicit = Elicitation
IRoots = Roots
ICompletion = Completion
