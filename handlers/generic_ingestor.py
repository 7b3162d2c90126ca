"""
Generic Ingestor - Lambda Entrypoint

Writes one arbitrary JSON invocation payload, with the invocation context,
to the raw events table. Returns "Success" once the record is acknowledged
and the stream closed; any failure is raised so Lambda's own retry policy
applies.
"""

from __future__ import annotations

import logging
from typing import Any

from ingestor.core.error_taxonomy import log_classified_error
from ingestor.core.logging import LogContext, Timer
from ingestor.core.models import GenericPayload, InvocationMetadata
from ingestor.orchestrator import InvocationResult
from ingestor.schemas import GENERIC_EVENTS

from .runtime import IngestorRuntime, get_runtime, run_async

logger = logging.getLogger(__name__)

HANDLER_NAME = "generic"


async def ingest_event(payload: Any, context: Any, runtime: IngestorRuntime) -> InvocationResult:
    metadata = InvocationMetadata.from_lambda_context(context)
    orchestrator = runtime.orchestrator(GENERIC_EVENTS)

    with LogContext(request_id=metadata.request_id, handler=HANDLER_NAME), Timer() as timer:
        result = await orchestrator.run([GenericPayload(payload=payload)], metadata)
        if result.error is not None:
            log_classified_error(result.error, {"request_id": metadata.request_id, "state": result.state.value})
        logger.info(
            "Generic invocation finished: %s",
            result.state.value,
            extra={"duration_ms": timer.elapsed_ms, "state": result.state.value},
        )
    return result


def lambda_handler(event: Any, context: Any) -> str:
    """Lambda entrypoint for single-event invocations."""
    runtime = get_runtime()
    result = run_async(ingest_event(event, context, runtime))

    result.raise_for_failure()
    failed = result.outcome.failed
    if failed and failed[0].error is not None:
        raise failed[0].error
    return "Success"
