"""Batch Result Reporter: per-item outcomes and the SQS partial-failure response."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

from .core.models import BatchItemFailure, BatchResponse


class ItemStatus(str, Enum):
    PENDING = "pending"
    ACKED = "acked"
    FAILED = "failed"


@dataclass
class BatchItem:
    index: int
    identifier: str
    status: ItemStatus = ItemStatus.PENDING
    error: Optional[BaseException] = None


@dataclass
class BatchOutcome:
    """
    Ordered per-event outcomes of one invocation.

    ACKED is terminal: once an item's acknowledgment resolved successfully,
    no later failure (close, recovery) changes it.
    """

    items: List[BatchItem] = field(default_factory=list)

    @classmethod
    def for_identifiers(cls, identifiers: Iterable[str]) -> "BatchOutcome":
        return cls([BatchItem(index=i, identifier=ident) for i, ident in enumerate(identifiers)])

    def __len__(self) -> int:
        return len(self.items)

    def mark_acked(self, index: int) -> None:
        item = self.items[index]
        if item.status is ItemStatus.PENDING:
            item.status = ItemStatus.ACKED

    def mark_failed(self, index: int, error: Optional[BaseException] = None) -> None:
        item = self.items[index]
        if item.status is ItemStatus.ACKED:
            return
        item.status = ItemStatus.FAILED
        if error is not None:
            item.error = error

    def fail_pending(self, error: BaseException) -> int:
        """Mark every still-pending item FAILED. Returns how many changed."""
        count = 0
        for item in self.items:
            if item.status is ItemStatus.PENDING:
                item.status = ItemStatus.FAILED
                item.error = error
                count += 1
        return count

    @property
    def acked(self) -> List[BatchItem]:
        return [item for item in self.items if item.status is ItemStatus.ACKED]

    @property
    def failed(self) -> List[BatchItem]:
        return [item for item in self.items if item.status is ItemStatus.FAILED]

    @property
    def pending(self) -> List[BatchItem]:
        return [item for item in self.items if item.status is ItemStatus.PENDING]

    def summary(self) -> dict:
        return {
            "total": len(self.items),
            "acked": len(self.acked),
            "failed": len(self.failed),
            "pending": len(self.pending),
        }


def build_batch_response(outcome: BatchOutcome) -> BatchResponse:
    """
    Name every item that was not acknowledged, in batch order.

    Items without a message id are reported with an empty identifier.
    """
    return BatchResponse(
        batch_item_failures=[
            BatchItemFailure(item_identifier=item.identifier)
            for item in outcome.items
            if item.status is not ItemStatus.ACKED
        ]
    )
