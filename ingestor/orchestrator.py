"""
Stream Ingestors - Ingestion Orchestrator

Drives one invocation through its session lifecycle:

    INIT -> INGESTING -> CLOSING -> COMPLETED
      |         |           |
      v         v           v
    ABORTED   FAILED     RECOVERING -> FAILED

- INIT: open the session. StreamOpenError -> ABORTED, nothing ingested.
- INGESTING: encode each event and submit it through the ack window.
  Encode, submit and ack failures are per-item; the batch continues.
- CLOSING: flush and close. A CloseError hands over to recovery; the
  invocation is reported as failed even when recovery replays everything.
- The invocation deadline, less a reserved margin, bounds every wait. When it
  passes, the session is abandoned and the invocation FAILS with
  DeadlineExceededError while Lambda still has time to report it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Sequence

from .core.error_taxonomy import (
    CloseError,
    DeadlineExceededError,
    EncodingError,
    IngestorError,
    RecoveryError,
    StreamOpenError,
)
from .core.logging import LogContext, Timer
from .core.models import InvocationMetadata
from .encoder import InboundEvent, RecordEncoder, event_identifier
from .recovery import RecoveryReport, recover
from .reporter import BatchOutcome
from .stream import SessionManager, StreamConfig
from .window import AckWindow, Deadline

logger = logging.getLogger(__name__)


class InvocationState(str, Enum):
    INIT = "init"
    INGESTING = "ingesting"
    CLOSING = "closing"
    RECOVERING = "recovering"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"


@dataclass
class InvocationResult:
    """Final state of one invocation."""

    request_id: str
    state: InvocationState
    outcome: BatchOutcome
    error: Optional[IngestorError] = None
    recovery: Optional[RecoveryReport] = None

    @property
    def succeeded(self) -> bool:
        return self.state is InvocationState.COMPLETED and self.error is None

    def raise_for_failure(self) -> None:
        if self.error is not None:
            raise self.error


class IngestionOrchestrator:
    """
    Ingest one invocation's events into a single owned session.

    The orchestrator holds no per-invocation state between runs; each call to
    ``run`` opens, uses and closes (or abandons) its own session.
    """

    def __init__(
        self,
        sessions: SessionManager,
        config: StreamConfig,
        encoder: RecordEncoder,
        deadline_margin_ms: int = 0,
    ):
        self._sessions = sessions
        self._config = config
        self._encoder = encoder
        self._deadline_margin_ms = deadline_margin_ms

    def deadline_for(self, metadata: InvocationMetadata) -> Deadline:
        """Cooperative budget: the invocation deadline less the reserved margin."""
        return Deadline.from_epoch_ms(metadata.deadline_ms, margin_ms=self._deadline_margin_ms)

    async def run(self, events: Sequence[InboundEvent], metadata: InvocationMetadata) -> InvocationResult:
        deadline = self.deadline_for(metadata)
        outcome = BatchOutcome.for_identifiers(event_identifier(event, metadata) for event in events)

        def finish(
            state: InvocationState,
            error: Optional[IngestorError] = None,
            recovery: Optional[RecoveryReport] = None,
        ) -> InvocationResult:
            if error is not None:
                outcome.fail_pending(error)
            logger.info(
                "Invocation %s: %s",
                metadata.request_id,
                state.value,
                extra={"request_id": metadata.request_id, "state": state.value, **outcome.summary()},
            )
            return InvocationResult(metadata.request_id, state, outcome, error, recovery)

        # INIT
        try:
            session = await deadline.run(self._sessions.open(self._config), "opening stream")
        except StreamOpenError as exc:
            logger.error("Stream open failed; nothing ingested: %s", exc.reason)
            return finish(InvocationState.ABORTED, exc)
        except DeadlineExceededError as exc:
            return finish(InvocationState.FAILED, exc)

        def on_failure(index: int, exc: BaseException) -> None:
            logger.warning(
                "Item %d (%s) failed: %s",
                index,
                outcome.items[index].identifier or "<no id>",
                exc,
                extra={
                    "identifier": outcome.items[index].identifier,
                    "error_code": str(getattr(exc, "error_code", "")),
                },
            )
            outcome.mark_failed(index, exc)

        window: AckWindow[int] = AckWindow(
            self._config.max_inflight_records, deadline, on_ack=outcome.mark_acked, on_failure=on_failure
        )
        identifiers: Dict[bytes, str] = {}

        with LogContext(session_id=session.session_id), Timer() as timer:
            try:
                # INGESTING
                for index, event in enumerate(events):
                    try:
                        record = self._encoder.encode(event, metadata)
                    except EncodingError as exc:
                        on_failure(index, exc)
                        continue
                    identifiers.setdefault(record.payload, record.identifier)
                    await window.submit(session, record.payload, record.identifier, index)
                await window.drain()

                # CLOSING
                await deadline.run(session.close(), "closing stream")
            except DeadlineExceededError as exc:
                window.abandon()
                logger.error("Abandoning session %s: %s", session.session_id, exc.message)
                return finish(InvocationState.FAILED, exc)
            except CloseError as close_error:
                # RECOVERING
                try:
                    report = await recover(
                        self._sessions,
                        session,
                        close_error,
                        deadline,
                        identify=lambda payload: identifiers.get(payload, ""),
                    )
                except (RecoveryError, DeadlineExceededError) as exc:
                    logger.error("Recovery of session %s failed: %s", session.session_id, exc.message)
                    return finish(InvocationState.FAILED, exc)
                close_error.recovery = report
                return finish(InvocationState.FAILED, close_error, report)
            except Exception:
                window.abandon()
                raise

        logger.debug(
            "Session %s closed after %.2f ms (max outstanding=%d)",
            session.session_id,
            timer.elapsed_ms,
            window.high_water,
        )
        return finish(InvocationState.COMPLETED)
