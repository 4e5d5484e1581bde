"""Maps a batch response back onto the operations that produced it."""

import logging
from typing import Dict, List, Sequence

from jmapbridge.domain.errors import ErrorKind
from jmapbridge.domain.models.batch import BatchResponse, LogicalOperation, MethodResponse
from jmapbridge.domain.models.common import ResultLabel
from jmapbridge.domain.models.outcomes import Failure, OperationResult, Success

logger = logging.getLogger(__name__)

MISSING_RESPONSE = "missingResponse"
DEPENDENCY_FAILED = "dependencyFailed"


class ResponseUnpacker:
    """Turns a BatchResponse into one OperationResult per operation."""

    def unpack(self, response: BatchResponse, operations: Sequence[LogicalOperation]) -> List[OperationResult]:
        """Matches responses to operations by label, in submission order.

        An operation that back-references a failed operation fails with
        error_type 'dependencyFailed', whatever the remote said about it.
        """
        first_by_label: Dict[ResultLabel, MethodResponse] = {}
        for entry in response.results:
            # Implicit calls may repeat a label; the first one is the answer
            first_by_label.setdefault(entry.result_label, entry)

        results: List[OperationResult] = []
        failed: Dict[ResultLabel, Failure] = {}
        for op in operations:
            broken = next((r.source_label for r in op.back_references if r.source_label in failed), None)
            if broken is not None:
                result: OperationResult = Failure(
                    ErrorKind.REQUEST,
                    f"Depends on '{broken}', which failed: {failed[broken].detail}",
                    error_type=DEPENDENCY_FAILED,
                    label=op.result_label,
                )
            else:
                result = self._result_for(op, first_by_label.get(op.result_label))

            if isinstance(result, Failure):
                failed[op.result_label] = result
                logger.debug(f"Operation '{op.result_label}' ({op.method_name}) failed: {result.error_type}")
            results.append(result)
        return results

    @staticmethod
    def _result_for(op: LogicalOperation, entry) -> OperationResult:
        if entry is None:
            return Failure(
                ErrorKind.REQUEST,
                f"No response for '{op.result_label}' ({op.method_name})",
                error_type=MISSING_RESPONSE,
                label=op.result_label,
            )
        if entry.is_error:
            error_type = entry.payload.get("type") or "serverFail"
            description = entry.payload.get("description") or error_type
            return Failure(ErrorKind.REQUEST, str(description), error_type=str(error_type), label=op.result_label)
        return Success(entry.payload, method_name=entry.method_name)
