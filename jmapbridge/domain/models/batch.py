"""Domain models for batched JMAP method calls.

A caller describes work as an ordered list of LogicalOperation objects. The
batch builder turns them into a BatchRequest (the wire body), and the
response unpacker maps the BatchResponse back onto the operations.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from jmapbridge.domain.errors import ProtocolError
from jmapbridge.domain.models.common import (
    CapabilityURI,
    JsonPointer,
    MethodName,
    ResultLabel,
    capabilities_for_method,
)

# --- Argument values (tagged variant) ---

@dataclass(frozen=True)
class LiteralArg:
    """A concrete argument value sent as-is."""
    value: Any


@dataclass(frozen=True)
class BackReference:
    """Placeholder resolved remotely from an earlier call's result.

    Example: BackReference("query", "/ids") under argument 'ids' becomes
    {"#ids": {"resultOf": "query", "name": "Email/query", "path": "/ids"}}.
    """
    source_label: ResultLabel
    path: JsonPointer


ArgumentValue = Union[LiteralArg, BackReference]


def _as_argument(value: Any) -> ArgumentValue:
    if isinstance(value, (LiteralArg, BackReference)):
        return value
    return LiteralArg(value)


@dataclass(frozen=True)
class LogicalOperation:
    """One method call requested by a caller.

    Raw Python values in ``arguments`` are wrapped into LiteralArg. When
    ``capabilities`` is empty it is derived from the method name.
    """
    method_name: MethodName
    arguments: Mapping[str, ArgumentValue]
    result_label: ResultLabel
    capabilities: Tuple[CapabilityURI, ...] = ()

    def __post_init__(self) -> None:
        # frozen=True, so normalise through object.__setattr__
        normalised = {name: _as_argument(value) for name, value in dict(self.arguments).items()}
        object.__setattr__(self, "arguments", normalised)
        if not self.capabilities:
            object.__setattr__(self, "capabilities", capabilities_for_method(self.method_name))

    @property
    def back_references(self) -> List[BackReference]:
        return [arg for arg in self.arguments.values() if isinstance(arg, BackReference)]


def operation(
    method_name: str,
    arguments: Mapping[str, Any],
    result_label: str,
    capabilities: Tuple[str, ...] = (),
) -> LogicalOperation:
    """Shorthand used by domain services to build a LogicalOperation."""
    return LogicalOperation(
        method_name=MethodName(method_name),
        arguments=arguments,
        result_label=ResultLabel(result_label),
        capabilities=tuple(CapabilityURI(c) for c in capabilities),
    )


def ref(source_label: str, path: str) -> BackReference:
    """Shorthand for a BackReference."""
    return BackReference(ResultLabel(source_label), JsonPointer(path))


# --- Wire-level request ---

@dataclass(frozen=True)
class MethodCall:
    """One [name, arguments, callId] triple in a batch request."""
    method_name: MethodName
    arguments: Mapping[str, Any]
    result_label: ResultLabel

    def to_wire(self) -> List[Any]:
        return [self.method_name, dict(self.arguments), self.result_label]


@dataclass(frozen=True)
class BatchRequest:
    """Immutable wire batch produced by the batch builder."""
    using: Tuple[CapabilityURI, ...]
    calls: Tuple[MethodCall, ...]

    def to_wire(self) -> Dict[str, Any]:
        return {
            "using": list(self.using),
            "methodCalls": [call.to_wire() for call in self.calls],
        }

    @property
    def labels(self) -> Tuple[ResultLabel, ...]:
        return tuple(call.result_label for call in self.calls)


# --- Wire-level response ---

ERROR_METHOD = "error"


@dataclass(frozen=True)
class MethodResponse:
    """One [name, payload, callId] triple in a batch response."""
    method_name: str
    payload: Mapping[str, Any]
    result_label: ResultLabel

    @property
    def is_error(self) -> bool:
        return self.method_name == ERROR_METHOD


@dataclass(frozen=True)
class BatchResponse:
    """Parsed batch response body."""
    session_state: Optional[str]
    results: Tuple[MethodResponse, ...] = field(default_factory=tuple)

    @classmethod
    def from_wire(cls, body: Any) -> "BatchResponse":
        """Parses a JSON response body.

        Raises:
            ProtocolError: If the body is not a well-formed batch response.
        """
        if not isinstance(body, Mapping):
            raise ProtocolError("Batch response is not a JSON object")
        raw_responses = body.get("methodResponses")
        if not isinstance(raw_responses, list):
            raise ProtocolError("Batch response has no methodResponses list")

        results = []
        for index, entry in enumerate(raw_responses):
            if not isinstance(entry, list) or len(entry) != 3:
                raise ProtocolError(f"methodResponses[{index}] is not a [name, payload, id] triple")
            name, payload, label = entry
            if not isinstance(name, str) or not isinstance(label, str) or not isinstance(payload, Mapping):
                raise ProtocolError(f"methodResponses[{index}] has invalid member types")
            results.append(MethodResponse(name, payload, ResultLabel(label)))
        return cls(session_state=body.get("sessionState"), results=tuple(results))
