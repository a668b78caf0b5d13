"""Intent creators - turn a QR scan, contact, biller or request into a persisted Intent"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from flow_gateway.config import settings
from flow_gateway.domain.exceptions import IntentNotFoundError, InvalidIntentError
from flow_gateway.domain.models import GateResult, IntentType, RuntimeMode
from flow_gateway.infrastructure.database.models import Intent
from flow_gateway.infrastructure.database.repositories import IntentRepository
from flow_gateway.infrastructure.security.rate_limiter import RateLimiter
from flow_gateway.services.gates import check_intent_creation_gates

logger = logging.getLogger(__name__)

INTENT_ACTION = "intent.create"


@dataclass
class IntentResult:
    success: bool
    intent_id: Optional[str] = None
    error: Optional[str] = None
    gate_result: Optional[GateResult] = None


def intent_to_dict(intent: Intent) -> Dict[str, Any]:
    return {
        "id": str(intent.id),
        "user_id": intent.user_id,
        "type": intent.type,
        "payee_name": intent.payee_name,
        "payee_identifier": intent.payee_identifier,
        "amount_cents": int(intent.amount_cents),
        "currency": intent.currency,
        "metadata": intent.intent_metadata or {},
    }


def _validate_amount(amount_cents: Optional[int]) -> int:
    if amount_cents is None or amount_cents <= 0:
        raise InvalidIntentError("Amount must be greater than zero")
    return amount_cents


def _create_intent(
    db: Session,
    user_id: str,
    intent_type: IntentType,
    payee_name: str,
    payee_identifier: str,
    amount_cents: Optional[int],
    metadata: Dict[str, Any],
    mode: RuntimeMode,
    currency: Optional[str] = None,
) -> IntentResult:
    gate = check_intent_creation_gates(db, user_id, mode)
    if not gate.passed:
        return IntentResult(success=False, error=gate.blocked_reason, gate_result=gate)

    try:
        amount_cents = _validate_amount(amount_cents)
    except InvalidIntentError as e:
        return IntentResult(success=False, error=str(e))

    limiter = RateLimiter(db)
    if not limiter.check(user_id, INTENT_ACTION).allowed:
        return IntentResult(success=False, error="Too many requests. Try again in a moment.")

    intent = IntentRepository(db).create_intent(
        user_id=user_id,
        intent_type=intent_type,
        payee_name=payee_name,
        payee_identifier=payee_identifier,
        amount_cents=amount_cents,
        currency=currency or settings.default_currency,
        metadata=metadata,
    )
    db.commit()
    limiter.record(user_id, INTENT_ACTION)

    logger.info(
        "Intent created",
        extra={"user_id": user_id, "intent_id": str(intent.id), "intent_type": intent_type.value},
    )
    return IntentResult(success=True, intent_id=str(intent.id))


def create_intent_from_qr(
    db: Session,
    user_id: str,
    qr_payload_id: str,
    amount_cents: Optional[int] = None,
    mode: RuntimeMode = RuntimeMode.STRICT,
) -> IntentResult:
    """
    PayMerchant intent from a scanned QR. A static QR carries no amount, so
    the caller supplies one; a dynamic QR's embedded amount wins.
    """
    qr = IntentRepository(db).get_qr_payload(qr_payload_id, user_id)
    if qr is None:
        return IntentResult(success=False, error="QR code not found")

    return _create_intent(
        db,
        user_id,
        IntentType.PAY_MERCHANT,
        payee_name=qr.merchant_name or "Merchant",
        payee_identifier=qr.reference_id or str(qr.id),
        amount_cents=qr.amount_cents or amount_cents,
        metadata={
            "qr_payload_id": str(qr.id),
            "rails_available": qr.rails_available,
            "raw_payload": qr.raw_payload,
        },
        mode=mode,
        currency=qr.currency,
    )


def create_intent_send_money(
    db: Session,
    user_id: str,
    contact_id: str,
    amount_cents: int,
    note: Optional[str] = None,
    mode: RuntimeMode = RuntimeMode.STRICT,
) -> IntentResult:
    contact = IntentRepository(db).get_contact(contact_id, user_id)
    if contact is None:
        return IntentResult(success=False, error="Contact not found")

    return _create_intent(
        db,
        user_id,
        IntentType.SEND_MONEY,
        payee_name=contact.name,
        payee_identifier=contact.phone,
        amount_cents=amount_cents,
        metadata={
            "contact_id": str(contact.id),
            "supported_wallets": contact.supported_wallets,
            "default_wallet": contact.default_wallet,
            "note": note,
        },
        mode=mode,
    )


def create_intent_pay_bill(
    db: Session,
    user_id: str,
    biller_account_id: str,
    amount_cents: int,
    mode: RuntimeMode = RuntimeMode.STRICT,
) -> IntentResult:
    account = IntentRepository(db).get_biller_account(biller_account_id, user_id)
    if account is None:
        return IntentResult(success=False, error="Biller account not found")
    if account.status != "linked":
        return IntentResult(success=False, error="Biller account is not linked")

    return _create_intent(
        db,
        user_id,
        IntentType.PAY_BILL,
        payee_name=account.biller_name,
        payee_identifier=account.account_reference,
        amount_cents=amount_cents,
        metadata={"biller_account_id": str(account.id), "biller_name": account.biller_name},
        mode=mode,
    )


def create_intent_request_money(
    db: Session,
    user_id: str,
    from_name: str,
    from_phone: str,
    amount_cents: int,
    note: Optional[str] = None,
    mode: RuntimeMode = RuntimeMode.STRICT,
) -> IntentResult:
    return _create_intent(
        db,
        user_id,
        IntentType.REQUEST_MONEY,
        payee_name=from_name,
        payee_identifier=from_phone,
        amount_cents=amount_cents,
        metadata={"note": note},
        mode=mode,
    )


def get_intent(db: Session, user_id: str, intent_id: str) -> Intent:
    """
    Raises:
        IntentNotFoundError: Unknown intent or owned by another user
    """
    intent = IntentRepository(db).get_intent(intent_id, user_id)
    if intent is None:
        raise IntentNotFoundError(f"Intent {intent_id} not found")
    return intent
