"""
Audit trail -- append-only, hash-chained log of every state change.

Responsibility:
    Builds new ``AuditLog`` entries on top of an existing trail and verifies
    the integrity of a trail.

Architecture position:
    Kernel > Domain -- pure.  Services create an ``AuditTrail`` over the
    current state's logs, record entries while planning an action, and
    publish ``trail.entries`` as part of the next state.

Invariants enforced:
    - Entries are only appended; existing entries are never edited or removed.
    - ``seq`` increases by exactly one per entry.
    - ``hash = H(entity | entity_id | action | payload_hash | prev_hash)``
      and ``prev_hash`` equals the predecessor's ``hash``.

Failure modes:
    - ``verify_audit_chain`` raises AuditChainBrokenError on the first entry
      whose hash or linkage does not recompute.
"""

from collections.abc import Sequence
from dataclasses import replace
from datetime import datetime
from typing import Any
from uuid import uuid4

from restaurant_kernel.domain.models import AuditAction, AuditEntity, AuditLog
from restaurant_kernel.exceptions import AuditChainBrokenError
from restaurant_kernel.logging_config import get_logger
from restaurant_kernel.utils.hashing import hash_audit_entry, hash_payload
from restaurant_kernel.utils.serialization import to_primitive

logger = get_logger("domain.audit")


def _entry_payload_hash(entry: AuditLog) -> str:
    return hash_payload({
        "id": entry.id,
        "seq": entry.seq,
        "timestamp": entry.timestamp,
        "user_id": entry.user_id,
        "user_name": entry.user_name,
        "details": entry.details,
        "before": entry.before,
        "after": entry.after,
    })


def compute_entry_hash(entry: AuditLog) -> str:
    """Recompute the chained hash of ``entry`` from its own fields."""
    return hash_audit_entry(
        entity=entry.entity.value,
        entity_id=entry.entity_id or "",
        action=entry.action.value,
        payload_hash=_entry_payload_hash(entry),
        prev_hash=entry.prev_hash,
    )


class AuditTrail:
    """
    Accumulates audit entries for one action on top of an existing trail.

    The actor and timestamp are fixed for the whole action, so every entry
    produced by one sale or one shift close shares them.
    """

    def __init__(
        self,
        entries: Sequence[AuditLog],
        *,
        timestamp: datetime,
        user_id: str | None,
        user_name: str,
    ):
        self._entries: list[AuditLog] = list(entries)
        self._timestamp = timestamp
        self._user_id = user_id
        self._user_name = user_name

    @property
    def entries(self) -> tuple[AuditLog, ...]:
        return tuple(self._entries)

    @property
    def last_hash(self) -> str | None:
        return self._entries[-1].hash if self._entries else None

    def record(
        self,
        action: AuditAction,
        entity: AuditEntity,
        entity_id: str | None,
        details: str,
        before: Any = None,
        after: Any = None,
    ) -> AuditLog:
        """
        Append one entry and return it.

        ``before``/``after`` may be domain objects; they are stored as
        JSON-compatible snapshots so later edits to the entity cannot reach
        back into the trail.
        """
        draft = AuditLog(
            id=str(uuid4()),
            seq=len(self._entries) + 1,
            timestamp=self._timestamp,
            user_id=self._user_id,
            user_name=self._user_name,
            action=action,
            entity=entity,
            entity_id=entity_id,
            details=details,
            before=to_primitive(before),
            after=to_primitive(after),
            prev_hash=self.last_hash,
        )
        entry = replace(draft, hash=compute_entry_hash(draft))
        self._entries.append(entry)
        logger.debug(
            "audit_entry_recorded",
            extra={
                "seq": entry.seq,
                "action": action.value,
                "entity": entity.value,
                "entity_id": entity_id,
            },
        )
        return entry


def verify_audit_chain(entries: Sequence[AuditLog]) -> bool:
    """
    Validate an entire audit trail.

    Postconditions:
        Returns True only if every stored ``hash`` recomputes and every
        ``prev_hash`` matches its predecessor's ``hash``.

    Raises:
        AuditChainBrokenError: At the first entry that fails validation.
    """
    prev_hash: str | None = None
    for entry in entries:
        if entry.prev_hash != prev_hash:
            logger.critical(
                "audit_chain_broken",
                extra={"audit_log_id": entry.id, "seq": entry.seq},
            )
            raise AuditChainBrokenError(entry.id, prev_hash or "None", entry.prev_hash or "None")

        expected = compute_entry_hash(entry)
        if entry.hash != expected:
            logger.critical(
                "audit_chain_broken",
                extra={"audit_log_id": entry.id, "seq": entry.seq},
            )
            raise AuditChainBrokenError(entry.id, expected, entry.hash)
        prev_hash = entry.hash

    logger.info("audit_chain_valid", extra={"entry_count": len(entries)})
    return True
