"""HMAC-SHA256 transaction signer for the intent -> plan -> execute chain"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from flow_gateway.config import settings
from flow_gateway.domain.exceptions import SigningUnavailableError
from flow_gateway.domain.models import TransactionSignature
from flow_gateway.infrastructure.database.models import TransactionSignatureRecord
from flow_gateway.infrastructure.database.repositories import as_uuid
from flow_gateway.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


def canonical_json(data: Dict[str, Any]) -> str:
    """Stable serialisation: sorted keys, no whitespace"""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)


class TransactionSigner:
    """Signs execution payloads and stores the signature with a payload hash"""

    def __init__(self, db: Session, signing_key: Optional[str] = None):
        self.db = db
        self.signing_key = settings.signing_key if signing_key is None else signing_key

    def sign(self, intent_id: str, plan_id: str, payload: Dict[str, Any]) -> TransactionSignature:
        """
        Raises:
            SigningUnavailableError: No key configured or the signature could not be stored
        """
        if not self.signing_key:
            raise SigningUnavailableError("Signing key is not configured")

        message = canonical_json(
            {
                "intent_id": intent_id,
                "plan_id": plan_id,
                "payload": payload,
                "signed_at": utcnow().isoformat(),
            }
        )
        signature = hmac.new(self.signing_key.encode(), message.encode(), hashlib.sha256).hexdigest()

        try:
            record = TransactionSignatureRecord(
                intent_id=intent_id,
                plan_id=plan_id,
                payload_hash=hashlib.sha256(message.encode()).hexdigest(),
                signature=signature,
            )
            self.db.add(record)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.warning("Transaction signing unavailable", extra={"plan_id": plan_id, "error": str(e)})
            raise SigningUnavailableError(f"Failed to store signature: {e}") from e

        return TransactionSignature(id=str(record.id), signature=signature, verified=False)

    def verify(self, signature_id: str) -> bool:
        """Mark a stored signature verified; False when it is unknown"""
        try:
            record_id = as_uuid(signature_id)
        except ValueError:
            return False

        record = self.db.query(TransactionSignatureRecord).filter(TransactionSignatureRecord.id == record_id).first()
        if record is None:
            return False

        record.verified = True
        record.verified_at = utcnow()
        self.db.commit()
        return True
