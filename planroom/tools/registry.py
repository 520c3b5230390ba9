"""
Capability registry.

A capability is a named lookup an assistant may call during its turn.
Each one declares a Pydantic argument model; raw arguments from the
reasoning engine are validated against it before the handler runs.

Execution never raises: unknown names, invalid arguments and handler
failures all come back as a result string so one failed lookup never
aborts a turn.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Type, Union

from pydantic import BaseModel, ValidationError


logger = logging.getLogger(__name__)


@dataclass
class CapabilitySpec:
    """
    Definition of one capability.

    Attributes:
        name: Name the engine uses to invoke it
        description: Shown to the engine in the tool schema
        args_model: Pydantic model validating the invocation arguments
        handler: Called with a validated ``args_model`` instance, returns text
        prompt_line: One-line description for the system prompt
    """

    name: str
    description: str
    args_model: Type[BaseModel]
    handler: Callable[[Any], str]
    prompt_line: str = ""

    def tool_schema(self) -> Dict[str, Any]:
        """OpenAI-style function schema."""
        parameters = self.args_model.model_json_schema()
        parameters.pop("title", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


@dataclass
class CapabilityCall:
    """A capability invocation requested by the engine."""

    call_id: str
    name: str
    arguments: Any


@dataclass
class ResolvedCapability:
    """An invocation whose name is known and whose arguments validated."""

    spec: CapabilitySpec
    args: BaseModel

    def run(self) -> str:
        try:
            return str(self.spec.handler(self.args))
        except Exception as e:
            logger.warning(f"Capability {self.spec.name} failed: {e}")
            return f"Error executing {self.spec.name}: {e}"


@dataclass
class UnknownCapability:
    name: str

    def run(self) -> str:
        return f"Unknown tool: {self.name}"


@dataclass
class InvalidArguments:
    name: str
    error: str

    def run(self) -> str:
        return f"Error executing {self.name}: invalid arguments: {self.error}"


Resolution = Union[ResolvedCapability, UnknownCapability, InvalidArguments]


class CapabilityRegistry:
    """Named capabilities available to assistants."""

    def __init__(self, specs: Optional[Iterable[CapabilitySpec]] = None):
        self._specs: Dict[str, CapabilitySpec] = {}
        for spec in specs or []:
            self.register(spec)

    def register(self, spec: CapabilitySpec) -> None:
        if not spec.name:
            raise ValueError("capability name cannot be empty")
        if spec.name in self._specs and self._specs[spec.name] is not spec:
            raise ValueError(f"capability already registered: {spec.name}")
        self._specs[spec.name] = spec

    def names(self) -> List[str]:
        return list(self._specs)

    def get(self, name: str) -> Optional[CapabilitySpec]:
        return self._specs.get(name)

    def tool_schemas(self, names: Iterable[str]) -> List[Dict[str, Any]]:
        """Schemas for the named capabilities, skipping unknown names."""
        return [self._specs[n].tool_schema() for n in names if n in self._specs]

    def prompt_lines(self, names: Iterable[str]) -> List[str]:
        return [
            self._specs[n].prompt_line or f"{n} - {self._specs[n].description}"
            for n in names
            if n in self._specs
        ]

    def resolve(self, name: str, arguments: Any, enabled: Optional[Iterable[str]] = None) -> Resolution:
        """
        Validate an invocation into one of the resolution variants.

        A capability that exists but is not in ``enabled`` is treated as
        unknown for this assistant.
        """
        spec = self._specs.get(name)
        if spec is None or (enabled is not None and name not in set(enabled)):
            return UnknownCapability(name)
        if not isinstance(arguments, dict):
            return InvalidArguments(name, "arguments must be an object")
        try:
            args = spec.args_model.model_validate(arguments)
        except ValidationError as e:
            return InvalidArguments(name, _summarize_validation_error(e))
        return ResolvedCapability(spec, args)

    def execute(self, name: str, arguments: Any, enabled: Optional[Iterable[str]] = None) -> str:
        """Resolve and run an invocation. Always returns a string."""
        return self.resolve(name, arguments, enabled).run()


def _summarize_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item.get("loc", ())) or "arguments"
        parts.append(f"{location}: {item.get('msg', 'invalid')}")
    return "; ".join(parts)
