"""
SQS Ingestor - Lambda Entrypoint

Writes every message of an SQS batch to the queue messages table and
returns a partial batch response naming only the messages that were not
acknowledged, so the event source mapping redelivers just those.

Requires ReportBatchItemFailures on the event source mapping.

A stream that cannot be opened fails the whole invocation (every message is
redelivered). Close and recovery failures are logged and folded into the
response: acknowledged messages are never redelivered.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

from ingestor.core.error_taxonomy import EncodingError, log_classified_error
from ingestor.core.logging import LogContext, Timer
from ingestor.core.models import BatchResponse, InvocationMetadata, SqsEvent
from ingestor.orchestrator import InvocationResult, InvocationState
from ingestor.reporter import build_batch_response
from ingestor.schemas import QUEUE_MESSAGES

from .runtime import IngestorRuntime, get_runtime, run_async

logger = logging.getLogger(__name__)

HANDLER_NAME = "sqs"


async def ingest_batch(event: Dict[str, Any], context: Any, runtime: IngestorRuntime) -> InvocationResult:
    sqs_event = SqsEvent.model_validate(event)
    metadata = InvocationMetadata.from_lambda_context(context, source=sqs_event.source())
    orchestrator = runtime.orchestrator(QUEUE_MESSAGES)

    with LogContext(request_id=metadata.request_id, handler=HANDLER_NAME), Timer() as timer:
        logger.info("Received SQS batch of %d records", len(sqs_event.records), extra={"count": len(sqs_event.records)})
        result = await orchestrator.run(sqs_event.messages(), metadata)
        if result.error is not None:
            log_classified_error(result.error, {"request_id": metadata.request_id, "state": result.state.value})
        logger.info(
            "SQS batch finished: %s",
            result.state.value,
            extra={"duration_ms": timer.elapsed_ms, "state": result.state.value, **result.outcome.summary()},
        )
    return result


def lambda_handler(event: Any, context: Any) -> Dict[str, Any]:
    """Lambda entrypoint for SQS event source mappings."""
    if not isinstance(event, Mapping):
        raise EncodingError(f"SQS event must be a JSON object, got {type(event).__name__}")
    records = event.get("Records")
    if not records:
        return BatchResponse().to_dict()
    if not isinstance(records, list):
        raise EncodingError(f"SQS event Records must be a list, got {type(records).__name__}")

    runtime = get_runtime()
    result = run_async(ingest_batch(event, context, runtime))

    if result.state is InvocationState.ABORTED:
        result.raise_for_failure()

    response = build_batch_response(result.outcome)
    if response.batch_item_failures:
        logger.warning(
            "Reporting %d of %d messages for redelivery",
            len(response.batch_item_failures),
            len(result.outcome),
            extra={"count": len(response.batch_item_failures)},
        )
    return response.to_dict()
