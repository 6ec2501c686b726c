"""Tool contract shared by built-in tools and sandboxed skills.

The agent loop only sees Tool, ToolDescriptor and ToolOutput. Built-in tools
run in-process; skill tools run their module in the sandbox. Both sit behind
the same interface so callers never branch on the kind of tool.
"""

import inspect
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, get_type_hints

from pydantic import BaseModel, ConfigDict, ValidationError, create_model

from skillbox.sandbox.invocation import Invocation, InvocationState
from skillbox.tools.errors import (
    InvalidToolInputError,
    ToolCapabilityDeniedError,
    ToolError,
    ToolExecutionError,
    ToolFuelExhaustedError,
    ToolHostError,
    ToolLoadError,
    ToolRegistrationError,
    ToolTimeoutError,
    ToolTrappedError,
)
from skillbox.utils.responses import is_response

if TYPE_CHECKING:
    from skillbox.sandbox.runtime import SandboxRuntime
    from skillbox.skills.registry import SkillRecord

logger = logging.getLogger(__name__)

SKILL_PARAMETERS_SCHEMA: dict[str, Any] = {"type": "object", "additionalProperties": True}


@dataclass
class ToolOutput:
    """Result of a tool call.

    Attributes:
        content: Text handed back to the model
        is_error: True when the tool reported an expected failure
        data: Structured payload (tool response dict, invocation summary, ...)
    """

    content: str
    is_error: bool = False
    data: Any = None

    @classmethod
    def from_result(cls, result: Any) -> "ToolOutput":
        """Build output from whatever a built-in tool returned."""
        if is_response(result):
            if result["success"]:
                return cls(content=_as_text(result.get("result")), data=result)
            error = result.get("error", "error")
            return cls(content=f"{error}: {result.get('message', '')}", is_error=True, data=result)
        return cls(content=_as_text(result), data=result)

    def to_response(self) -> dict[str, Any]:
        if self.is_error:
            return {"success": False, "error": "tool_error", "message": self.content}
        return {"success": True, "result": self.content, "message": ""}


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str)


@dataclass
class ToolDescriptor:
    """What the agent needs to know to offer a tool to the model.

    full_documentation is loaded on first access and is not part of the
    prompt summary.
    """

    name: str
    short_description: str
    is_sandboxed: bool
    parameters_schema: dict[str, Any]
    version: str | None = None
    documentation_loader: Callable[[], str] | None = field(default=None, repr=False, compare=False)
    _documentation: str | None = field(default=None, init=False, repr=False, compare=False)

    @property
    def full_documentation(self) -> str:
        if self._documentation is None:
            loader = self.documentation_loader
            self._documentation = loader() if loader is not None else self.short_description
        return self._documentation

    def to_prompt_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.short_description,
            "input_schema": self.parameters_schema,
        }


class Tool(ABC):
    """A named operation the agent can invoke."""

    is_sandboxed: bool = False

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @abstractmethod
    def parameters_schema(self) -> dict[str, Any]:
        pass

    @abstractmethod
    async def invoke(self, args: dict[str, Any]) -> ToolOutput:
        """Run the tool.

        Raises:
            ToolError: On any failure the caller should see
        """
        pass

    def documentation(self) -> str:
        return self.description

    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            short_description=self.description,
            is_sandboxed=self.is_sandboxed,
            parameters_schema=self.parameters_schema(),
            documentation_loader=self.documentation,
        )


class BuiltinTool(Tool):
    """In-process tool wrapping an async function.

    Parameters are read from the function signature. Annotate them with
    Annotated[type, Field(description=...)]; pydantic builds the JSON schema
    and validates arguments.

    Example:
        >>> async def greet(name: Annotated[str, Field(description="Who to greet")]) -> dict:
        ...     '''Say hello.'''
        ...     return create_success_response(f"Hello, {name}!")
        >>> tool = BuiltinTool.from_function(greet)
        >>> (await tool.invoke({"name": "Ada"})).content
        'Hello, Ada!'
    """

    def __init__(
        self,
        func: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
    ):
        self.func = func
        self._name = name or func.__name__
        doc = inspect.getdoc(func) or ""
        self._documentation = doc
        self._description = description or (doc.split("\n\n", 1)[0].replace("\n", " ") if doc else self._name)
        self.args_model = _build_args_model(func, self._name)

    @classmethod
    def from_function(cls, func: Callable[..., Any], **kwargs: Any) -> "BuiltinTool":
        return cls(func, **kwargs)

    @property
    def name(self) -> str:
        return self._name

    @property
    def description(self) -> str:
        return self._description

    def parameters_schema(self) -> dict[str, Any]:
        return self.args_model.model_json_schema()

    def documentation(self) -> str:
        return self._documentation or self._description

    async def invoke(self, args: dict[str, Any]) -> ToolOutput:
        try:
            validated = self.args_model.model_validate(args)
        except ValidationError as e:
            raise InvalidToolInputError(
                f"Invalid arguments for '{self.name}'", detail=_validation_detail(e)
            ) from None

        kwargs = {key: getattr(validated, key) for key in self.args_model.model_fields}
        try:
            result = self.func(**kwargs)
            if inspect.isawaitable(result):
                result = await result
        except ToolError:
            raise
        except Exception as e:
            logger.error(f"Tool '{self.name}' failed: {e}", exc_info=True)
            raise ToolExecutionError(
                f"Tool '{self.name}' failed", detail=f"{type(e).__name__}: {e}"
            ) from e

        return ToolOutput.from_result(result)


def _build_args_model(func: Callable[..., Any], tool_name: str) -> type[BaseModel]:
    try:
        hints = get_type_hints(func, include_extras=True)
    except (NameError, TypeError) as e:
        raise ToolRegistrationError(f"Cannot read parameters of '{tool_name}': {e}") from e

    fields: dict[str, Any] = {}
    for param in inspect.signature(func).parameters.values():
        if param.name == "self" or param.kind in (param.VAR_POSITIONAL, param.VAR_KEYWORD):
            continue
        annotation = hints.get(param.name, Any)
        default = ... if param.default is inspect.Parameter.empty else param.default
        fields[param.name] = (annotation, default)

    model_name = "".join(part.capitalize() for part in tool_name.split("_")) + "Args"
    return create_model(model_name, __config__=ConfigDict(extra="forbid"), **fields)


def _validation_detail(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "arguments"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def raise_for_outcome(invocation: Invocation) -> None:
    """Raise the ToolError matching a non-successful sandbox outcome."""
    outcome = invocation.outcome
    if outcome is InvocationState.COMPLETED:
        return

    error_types: dict[InvocationState, type[ToolError]] = {
        InvocationState.CAPABILITY_DENIED: ToolCapabilityDeniedError,
        InvocationState.FUEL_EXHAUSTED: ToolFuelExhaustedError,
        InvocationState.TIMED_OUT: ToolTimeoutError,
        InvocationState.TRAPPED: ToolTrappedError,
        InvocationState.HOST_ERROR: ToolHostError,
        InvocationState.LOAD_FAILED: ToolLoadError,
    }
    error_type = error_types.get(outcome, ToolTrappedError)
    label = f"{invocation.skill_name}@{invocation.skill_version}"
    raise error_type(
        f"Skill {label} failed: {outcome.value if outcome else 'no outcome'}",
        skill_name=invocation.skill_name,
        version=invocation.skill_version,
        detail=invocation.detail,
    )


class SkillTool(Tool):
    """Tool backed by an installed skill, executed in the sandbox.

    The JSON arguments are the guest's input; the guest's output is the
    tool's content.
    """

    is_sandboxed = True

    def __init__(self, record: "SkillRecord", runtime: "SandboxRuntime"):
        self.record = record
        self.runtime = runtime

    @property
    def name(self) -> str:
        return self.record.manifest.name

    @property
    def version(self) -> str:
        return self.record.manifest.version

    @property
    def description(self) -> str:
        return self.record.manifest.description

    def parameters_schema(self) -> dict[str, Any]:
        return dict(SKILL_PARAMETERS_SCHEMA)

    def documentation(self) -> str:
        return self.record.manifest.documentation or self.description

    def descriptor(self) -> ToolDescriptor:
        descriptor = super().descriptor()
        descriptor.version = self.version
        return descriptor

    async def invoke(self, args: dict[str, Any]) -> ToolOutput:
        payload = json.dumps(args).encode("utf-8")
        invocation = await self.runtime.invoke(self.record.manifest, payload)
        raise_for_outcome(invocation)

        output = invocation.output or b""
        return ToolOutput(content=output.decode("utf-8", errors="replace"), data=invocation.summary())
