"""Composes logical operations into one wire-level batch request.

Validates labels and back-references before anything is sent, encodes
back-references in JMAP result-reference form and computes the ordered,
deduplicated capability list.
"""

import logging
from typing import Any, Dict, List, Mapping, Sequence

from jmapbridge.domain.errors import InvalidBatchError
from jmapbridge.domain.models.batch import (
    BackReference,
    BatchRequest,
    LiteralArg,
    LogicalOperation,
    MethodCall,
)
from jmapbridge.domain.models.common import CORE_CAPABILITY, CapabilityURI, MethodName, ResultLabel

logger = logging.getLogger(__name__)

RESULT_REFERENCE_PREFIX = "#"


def _check_literal(value: Any, where: str) -> None:
    """Rejects hand-written result references hidden inside literal values."""
    if isinstance(value, Mapping):
        for key, nested in value.items():
            # '#creationId' patch keys are legal; only result references are not
            if (isinstance(key, str) and key.startswith(RESULT_REFERENCE_PREFIX)
                    and isinstance(nested, Mapping) and "resultOf" in nested):
                raise InvalidBatchError(
                    f"{where}: literal key '{key}' looks like a result reference; use a BackReference"
                )
            _check_literal(nested, where)
    elif isinstance(value, (list, tuple)):
        for nested in value:
            _check_literal(nested, where)


class BatchBuilder:
    """Builds BatchRequest objects from ordered LogicalOperation sequences."""

    def build(self, operations: Sequence[LogicalOperation]) -> BatchRequest:
        """Validates and encodes operations into a single batch.

        Args:
            operations: Operations in the order the remote must run them.

        Returns:
            The immutable BatchRequest.

        Raises:
            InvalidBatchError: On an empty batch, duplicate or empty labels,
                undefined/forward/self back-references, bad pointer paths
                or literal '#' keys.
        """
        if not operations:
            raise InvalidBatchError("Cannot build an empty batch")

        methods_by_label: Dict[ResultLabel, MethodName] = {}
        using: List[CapabilityURI] = [CORE_CAPABILITY]
        calls: List[MethodCall] = []

        for index, op in enumerate(operations):
            where = f"operation {index} ({op.method_name})"
            if not op.result_label:
                raise InvalidBatchError(f"{where}: result label must not be empty")
            if op.result_label in methods_by_label:
                raise InvalidBatchError(f"{where}: duplicate result label '{op.result_label}'")

            wire_args: Dict[str, Any] = {}
            for name, value in op.arguments.items():
                if name.startswith(RESULT_REFERENCE_PREFIX):
                    raise InvalidBatchError(f"{where}: argument name '{name}' must not start with '#'")
                if isinstance(value, BackReference):
                    wire_args[RESULT_REFERENCE_PREFIX + name] = self._encode_reference(
                        value, op.result_label, methods_by_label, where
                    )
                elif isinstance(value, LiteralArg):
                    _check_literal(value.value, where)
                    wire_args[name] = value.value
                else:
                    raise InvalidBatchError(f"{where}: unsupported argument type {type(value).__name__}")

            for capability in op.capabilities:
                if capability not in using:
                    using.append(capability)

            calls.append(MethodCall(op.method_name, wire_args, op.result_label))
            methods_by_label[op.result_label] = op.method_name

        batch = BatchRequest(using=tuple(using), calls=tuple(calls))
        logger.debug(f"Built batch of {len(calls)} call(s) using {len(using)} capabilities")
        return batch

    @staticmethod
    def _encode_reference(
        reference: BackReference,
        own_label: ResultLabel,
        earlier: Mapping[ResultLabel, MethodName],
        where: str,
    ) -> Dict[str, str]:
        if reference.source_label == own_label:
            raise InvalidBatchError(f"{where}: back-reference to its own label '{own_label}'")
        if reference.source_label not in earlier:
            raise InvalidBatchError(
                f"{where}: back-reference to unknown or later label '{reference.source_label}'"
            )
        if not reference.path.startswith("/"):
            raise InvalidBatchError(f"{where}: back-reference path '{reference.path}' must start with '/'")
        return {
            "resultOf": reference.source_label,
            "name": earlier[reference.source_label],
            "path": reference.path,
        }
