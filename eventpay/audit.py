"""Audit trail sink.

The settlement core emits structured entries (``PAYMENT_INTENT_CREATED``,
``PAYMENT_CONFIRMED``, ``PAYMENT_FAILED``) to an ``AuditSink``. Sinks are
fire-and-forget: a sink failure is logged and never changes the outcome of
the operation that emitted the entry.
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


@dataclass
class AuditEntry:
    """One audit trail record."""

    action: str
    user_id: Optional[str]
    resource_id: str
    meta: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "user_id": self.user_id,
            "resource_id": self.resource_id,
            "meta": self.meta,
            "created_at": self.created_at.isoformat(),
        }


class AuditSink(Protocol):
    """Protocol for audit destinations."""

    def log(self, entry: AuditEntry) -> None:
        ...


class LoggingAuditSink:
    """Writes audit entries to the ``eventpay.audit`` logger."""

    def __init__(self, logger_name: str = "eventpay.audit"):
        self._logger = logging.getLogger(logger_name)

    def log(self, entry: AuditEntry) -> None:
        self._logger.info(
            f"[AUDIT] action={entry.action} userId={entry.user_id} "
            f"resourceId={entry.resource_id} meta={json.dumps(entry.meta, default=str)}"
        )


def emit(sink: Optional[AuditSink], entry: AuditEntry) -> None:
    """Deliver an entry, logging (not raising) sink failures."""
    if sink is None:
        return
    try:
        sink.log(entry)
    except Exception:
        logger.exception(f"Audit sink failed for {entry.action} on {entry.resource_id}")
