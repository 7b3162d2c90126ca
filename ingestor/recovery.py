"""
Stream Ingestors - Recovery Procedure

Runs once per invocation, after a session failed to flush or close:

1. Fetch the unacknowledged records from the failed session.
2. Empty set: the close failure was transient, nothing to replay.
3. Open a replacement session with the identical StreamConfig.
4. Replay exactly the unacknowledged records through the same in-flight
   bound, then close the replacement.

Failures in steps 1, 3 and 4 raise RecoveryError. There is no second
recovery; records that fail again are carried on the error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .core.error_taxonomy import CloseError, DeadlineExceededError, RecoveryError
from .stream import IngestionSession, SessionManager
from .window import AckWindow, Deadline

logger = logging.getLogger(__name__)

Identify = Callable[[bytes], str]


@dataclass
class RecoveryReport:
    """What a recovery attempt found and replayed."""

    session_id: str
    replacement_session_id: Optional[str] = None
    unacknowledged: int = 0
    replayed: int = 0
    transient: bool = False
    identifiers: List[str] = field(default_factory=list)

    def to_log_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "replacement_session_id": self.replacement_session_id,
            "unacknowledged": self.unacknowledged,
            "replayed": self.replayed,
            "transient": self.transient,
        }


def _unknown(_: bytes) -> str:
    return ""


async def recover(
    sessions: SessionManager,
    failed_session: IngestionSession,
    close_error: CloseError,
    deadline: Optional[Deadline] = None,
    identify: Identify = _unknown,
) -> RecoveryReport:
    """
    Replay the unacknowledged backlog of ``failed_session`` on a fresh session.

    Args:
        sessions: Manager used to recreate the session
        failed_session: Session whose flush or close failed
        close_error: The failure that triggered recovery
        deadline: Invocation deadline bounding every wait
        identify: Maps a serialized record back to its event identifier (for logs)

    Returns:
        RecoveryReport; ``transient`` is set when there was nothing to replay.

    Raises:
        RecoveryError: The backlog could not be fetched, the replacement could
            not be opened, or replayed records were not confirmed.
        DeadlineExceededError: The invocation deadline passed mid-recovery.
    """
    deadline = deadline or Deadline.unbounded()
    report = RecoveryReport(session_id=failed_session.session_id)

    logger.warning(
        "Stream session %s failed to close; starting recovery",
        failed_session.session_id,
        extra={"session_id": failed_session.session_id, "error_message": close_error.reason},
    )

    # 1. Fetch the backlog
    try:
        unacked = await deadline.run(
            failed_session.get_unacknowledged(), "fetching unacknowledged records"
        )
    except DeadlineExceededError:
        raise
    except Exception as exc:
        raise RecoveryError("fetch", str(exc) or type(exc).__name__, close_error) from exc

    report.unacknowledged = len(unacked)
    report.identifiers = [identify(record) for record in unacked]

    # 2. Nothing lost
    if not unacked:
        report.transient = True
        logger.info(
            "No unacknowledged records on session %s; close failure was transient",
            failed_session.session_id,
            extra=report.to_log_dict(),
        )
        return report

    # 3. Replacement session from the same StreamConfig
    try:
        replacement = await deadline.run(sessions.recreate(failed_session), "reopening stream")
    except DeadlineExceededError:
        raise
    except Exception as exc:
        raise RecoveryError(
            "reopen", str(exc) or type(exc).__name__, close_error, failed_records=unacked
        ) from exc
    report.replacement_session_id = replacement.session_id

    # 4. Replay exactly the backlog, once
    refailed: Dict[int, BaseException] = {}
    window: AckWindow[int] = AckWindow(
        replacement.config.max_inflight_records,
        deadline,
        on_ack=lambda index: None,
        on_failure=refailed.__setitem__,
    )
    try:
        for index, record in enumerate(unacked):
            await window.submit(replacement, record, report.identifiers[index], index)
        await window.drain()
    except DeadlineExceededError:
        window.abandon()
        raise

    report.replayed = len(unacked) - len(refailed)
    failed_records = [unacked[index] for index in sorted(refailed)]

    try:
        await deadline.run(replacement.close(), "closing replacement stream")
    except CloseError as exc:
        raise RecoveryError(
            "replay", f"replacement session failed to close: {exc.reason}", close_error, failed_records
        ) from exc

    if failed_records:
        raise RecoveryError(
            "replay",
            f"{len(failed_records)} of {len(unacked)} replayed records were not acknowledged",
            close_error,
            failed_records,
        )

    logger.info(
        "Recovered %d records on replacement session %s",
        report.replayed,
        replacement.session_id,
        extra=report.to_log_dict(),
    )
    return report
