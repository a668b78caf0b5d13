"""Append-only, hash-chained audit log"""

import hashlib
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from flow_gateway.domain.models import AuditLogResult
from flow_gateway.infrastructure.database.models import AuditLog
from flow_gateway.infrastructure.observability.metrics import audit_log_failure_counter
from flow_gateway.infrastructure.security.signer import canonical_json

logger = logging.getLogger(__name__)


def chain_hash(previous_hash: Optional[str], entry: Dict[str, Any]) -> str:
    return hashlib.sha256(((previous_hash or "") + canonical_json(entry)).encode()).hexdigest()


def _entry(row: AuditLog) -> Dict[str, Any]:
    return {
        "user_id": row.user_id,
        "action": row.action,
        "entity_type": row.entity_type,
        "entity_id": row.entity_id,
        "payload": row.payload,
        "risk_score": row.risk_score,
    }


class AuditSink:
    """
    Each entry stores the previous entry's hash, so editing or deleting a
    row breaks the chain at that point. Writes are best-effort.
    """

    def __init__(self, db: Session):
        self.db = db

    def _last(self) -> Optional[AuditLog]:
        return self.db.query(AuditLog).order_by(AuditLog.created_at.desc()).first()

    def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        payload: Dict[str, Any],
        risk_score: int = 0,
        user_id: Optional[str] = None,
    ) -> Optional[AuditLogResult]:
        """Returns None when the entry could not be written"""
        try:
            previous = self._last()
            row = AuditLog(
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                payload=payload,
                risk_score=risk_score,
                previous_hash=previous.hash if previous else None,
            )
            row.hash = chain_hash(row.previous_hash, _entry(row))
            self.db.add(row)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            audit_log_failure_counter.inc()
            logger.warning(
                "Audit log skipped",
                extra={"audit_action": action, "entity_id": entity_id, "error": str(e)},
            )
            return None

        return AuditLogResult(logged=True, id=str(row.id), hash=row.hash)

    def verify_chain(self) -> bool:
        """Recompute every hash in order; False at the first broken link"""
        previous_hash = None
        for row in self.db.query(AuditLog).order_by(AuditLog.created_at.asc()).all():
            if row.previous_hash != previous_hash or row.hash != chain_hash(previous_hash, _entry(row)):
                logger.error("Audit chain broken", extra={"audit_log_id": str(row.id)})
                return False
            previous_hash = row.hash
        return True
