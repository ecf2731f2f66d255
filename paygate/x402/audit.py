# paygate/x402/audit.py
"""
Audit logging for x402 payments.

This module records seller-side payment events for:
- Dispute resolution
- Financial reconciliation
- Debugging failures

Log format: JSON lines (one event per line)
Log location: the path given to AuditLog (X402_AUDIT_LOG_PATH in settings)

Events logged:
- 402 returned (amount, network, recipient, resource)
- Payment rejected (reason, stage)
- Payment verified (payer)
- Payment settled (transaction hash, network)
- Settlement failed (reason, unconfirmed)
- Facilitator unavailable (operation, reason)

Write failures are logged and never raised into the request path.
"""
import json
import logging
import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


class AuditEventType(Enum):
    """Types of audit events that can be logged."""
    PAYMENT_REQUIRED_SENT = "payment_required_sent"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_VERIFIED = "payment_verified"
    PAYMENT_SETTLED = "payment_settled"
    SETTLEMENT_FAILED = "settlement_failed"
    FACILITATOR_UNAVAILABLE = "facilitator_unavailable"


def generate_request_id() -> str:
    """Generate a unique request ID for tracking."""
    return str(uuid.uuid4())[:8]


def create_audit_event(
    event_type: AuditEventType,
    data: Dict[str, Any],
    request_id: Optional[str] = None,
    payer: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Create an audit event dictionary.

    Args:
        event_type: Type of event to log
        data: Event-specific data
        request_id: Unique request identifier (if available)
        payer: Payer address (if known)

    Returns:
        A structured event ready to be written to the audit log
    """
    return {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "event_type": event_type.value,
        "request_id": request_id or generate_request_id(),
        "payer": payer,
        "data": data,
    }


class AuditLog:
    """
    Append-only JSON-lines audit trail.

    A log created with ``path=None`` is disabled and drops every event.
    """

    def __init__(self, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path else None
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.path is not None

    def record(
        self,
        event_type: AuditEventType,
        data: Dict[str, Any],
        request_id: Optional[str] = None,
        payer: Optional[str] = None,
    ) -> Optional[str]:
        """
        Append an event to the log.

        Returns:
            The request_id used for this event, or None if disabled or on error
        """
        if self.path is None:
            return None

        event = create_audit_event(event_type, data, request_id=request_id, payer=payer)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self._lock, open(self.path, "a") as f:
                f.write(json.dumps(event) + "\n")
        except OSError as e:
            logger.error(f"Failed to write audit event: {e}")
            return None

        logger.debug(f"Audit event logged: {event_type.value} [{event['request_id']}]")
        return event["request_id"]

    def read(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Read events back, most recent last. Malformed lines are skipped."""
        if self.path is None or not self.path.exists():
            return []

        events = []
        with open(self.path) as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.warning("Skipping malformed audit log line")
        if limit is not None:
            events = events[-limit:]
        return events

    # Convenience methods for specific event types

    def payment_required_sent(self, request_id: str, requirements) -> Optional[str]:
        """Log a 402 Payment Required response event."""
        return self.record(
            AuditEventType.PAYMENT_REQUIRED_SENT,
            {
                "amount": requirements.amount,
                "network": requirements.network,
                "recipient": requirements.recipient,
                "resource": requirements.resource,
            },
            request_id=request_id,
        )

    def payment_rejected(
        self, request_id: str, reason: str, stage: str, payer: Optional[str] = None
    ) -> Optional[str]:
        return self.record(
            AuditEventType.PAYMENT_REJECTED,
            {"reason": reason, "stage": stage},
            request_id=request_id,
            payer=payer,
        )

    def payment_verified(self, request_id: str, payer: str, nonce: str) -> Optional[str]:
        return self.record(
            AuditEventType.PAYMENT_VERIFIED,
            {"nonce": nonce},
            request_id=request_id,
            payer=payer,
        )

    def payment_settled(self, request_id: str, payer: str, settlement) -> Optional[str]:
        return self.record(
            AuditEventType.PAYMENT_SETTLED,
            {"tx_hash": settlement.tx_hash, "network": settlement.network},
            request_id=request_id,
            payer=payer,
        )

    def settlement_failed(
        self, request_id: str, payer: str, reason: str, unconfirmed: bool
    ) -> Optional[str]:
        return self.record(
            AuditEventType.SETTLEMENT_FAILED,
            {"reason": reason, "unconfirmed": unconfirmed},
            request_id=request_id,
            payer=payer,
        )

    def facilitator_unavailable(self, request_id: str, operation: str, reason: str) -> Optional[str]:
        return self.record(
            AuditEventType.FACILITATOR_UNAVAILABLE,
            {"operation": operation, "reason": reason},
            request_id=request_id,
        )
