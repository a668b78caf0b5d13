"""
Access gates that must pass before intent creation and resolution.

Every check takes an explicit RuntimeMode. STRICT never bypasses a gate.
PERMISSIVE lets identity and consent failures through and auto-registers
unknown devices; each bypass is logged as a warning so it stays visible.
"""

import logging

from sqlalchemy.orm import Session

from flow_gateway.domain.models import GateCode, GateResult, RuntimeMode
from flow_gateway.infrastructure.database.repositories import AccessRepository

logger = logging.getLogger(__name__)


def _bypass(gate: str, user_id: str, reason: str) -> GateResult:
    logger.warning(
        "Gate bypassed in permissive mode",
        extra={"gate": gate, "user_id": user_id, "bypassed_reason": reason},
    )
    return GateResult(passed=True)


def check_identity_gate(db: Session, user_id: str, mode: RuntimeMode = RuntimeMode.STRICT) -> GateResult:
    user = AccessRepository(db).get_user(user_id)

    if user is None:
        reason = "Unable to verify identity"
    elif user.identity_status != "active":
        reason = "Your account is not active"
    else:
        return GateResult(passed=True)

    if mode is RuntimeMode.PERMISSIVE:
        return _bypass("identity", user_id, reason)
    return GateResult(passed=False, blocked_reason=reason, blocked_code=GateCode.IDENTITY_BLOCKED)


def check_device_trust_gate(
    db: Session,
    user_id: str,
    device_id: str,
    mode: RuntimeMode = RuntimeMode.STRICT,
) -> GateResult:
    """Passes for a known trusted device and refreshes its last_seen_at"""
    repo = AccessRepository(db)
    device = repo.get_device(user_id, device_id)

    if device is not None and device.trusted:
        repo.touch_device(device)
        return GateResult(passed=True)

    reason = "This device is not recognized" if device is None else "This device is not trusted"
    if mode is RuntimeMode.PERMISSIVE:
        if device is None:
            repo.register_device(user_id, device_id)
        else:
            device.trusted = True
            repo.touch_device(device)
        return _bypass("device_trust", user_id, reason)

    return GateResult(passed=False, blocked_reason=reason, blocked_code=GateCode.DEVICE_UNTRUSTED)


def check_consent_gate(
    db: Session,
    user_id: str,
    connector_id: str,
    mode: RuntimeMode = RuntimeMode.STRICT,
) -> GateResult:
    consent = AccessRepository(db).get_consent(user_id, connector_id)

    if consent is None:
        result = GateResult(
            passed=False,
            blocked_reason="Permission required to use this payment method",
            blocked_code=GateCode.CONSENT_MISSING,
        )
    elif consent.status == "revoked":
        result = GateResult(
            passed=False,
            blocked_reason="Permission was revoked for this payment method",
            blocked_code=GateCode.CONSENT_REVOKED,
        )
    elif consent.status == "expired":
        result = GateResult(
            passed=False,
            blocked_reason="Permission has expired for this payment method",
            blocked_code=GateCode.CONSENT_EXPIRED,
        )
    else:
        return GateResult(passed=True)

    if mode is RuntimeMode.PERMISSIVE:
        return _bypass("consent", user_id, result.blocked_reason)
    return result


def check_intent_creation_gates(db: Session, user_id: str, mode: RuntimeMode = RuntimeMode.STRICT) -> GateResult:
    """Identity only; device trust is checked at resolution"""
    return check_identity_gate(db, user_id, mode)


def check_resolution_gates(
    db: Session,
    user_id: str,
    device_id: str,
    mode: RuntimeMode = RuntimeMode.STRICT,
) -> GateResult:
    identity = check_identity_gate(db, user_id, mode)
    if not identity.passed:
        return identity
    return check_device_trust_gate(db, user_id, device_id, mode)
