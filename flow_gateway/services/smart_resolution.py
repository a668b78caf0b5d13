"""Loads rails and usage history for the smart scoring resolver"""

from typing import Dict, List, Sequence

from sqlalchemy.orm import Session

from flow_gateway.domain.models import (
    ConnectorStatus,
    FundingSource,
    IntentType,
    RailCandidate,
    SmartResolutionContext,
    SmartResolutionResult,
)
from flow_gateway.domain.smart_scoring import smart_resolve
from flow_gateway.infrastructure.database.models import Intent
from flow_gateway.infrastructure.database.repositories import IntentRepository, RailRepository, to_domain_source
from flow_gateway.utils.date_utils import days_ago

HISTORY_DAYS = 30
UNRANKED_PRIORITY = 99


def load_funding_sources(db: Session, user_id: str) -> List[FundingSource]:
    return [to_domain_source(row) for row in RailRepository(db).list_funding_sources(user_id)]


def load_rail_candidates(db: Session, user_id: str, sources: Sequence[FundingSource]) -> List[RailCandidate]:
    """Connectors joined with their funding source by name (balance and priority come from the source)"""
    by_name = {s.name: s for s in sources}
    candidates = []
    for connector in RailRepository(db).list_connectors(user_id):
        source = by_name.get(connector.name)
        candidates.append(
            RailCandidate(
                name=connector.name,
                connector_id=str(connector.id),
                type=connector.type,
                status=ConnectorStatus(connector.status),
                balance_cents=source.balance_cents if source else 0,
                priority=source.priority if source else UNRANKED_PRIORITY,
                capabilities=dict(connector.capabilities or {}),
                funding_source_id=source.id if source else None,
            )
        )
    return candidates


def load_history(db: Session, user_id: str, days: int = HISTORY_DAYS) -> Dict[str, int]:
    return RailRepository(db).success_counts_by_rail(user_id, days_ago(days))


def build_context(intent: Intent) -> SmartResolutionContext:
    metadata = intent.intent_metadata or {}
    return SmartResolutionContext(
        user_id=intent.user_id,
        amount_cents=int(intent.amount_cents),
        intent_type=IntentType(intent.type),
        merchant_rails=metadata.get("rails_available"),
        recipient_wallets=metadata.get("supported_wallets"),
        recipient_preferred_wallet=metadata.get("default_wallet"),
    )


def run_smart_resolution(db: Session, intent: Intent) -> SmartResolutionResult:
    sources = load_funding_sources(db, intent.user_id)
    rails = load_rail_candidates(db, intent.user_id, sources)
    history = load_history(db, intent.user_id)
    return smart_resolve(build_context(intent), rails, history, sources)


def get_smart_resolution_preview(db: Session, user_id: str, intent_id: str) -> SmartResolutionResult:
    """Score rails for an intent without persisting a plan"""
    intent = IntentRepository(db).get_intent(intent_id, user_id)
    if intent is None:
        return SmartResolutionResult(success=False, explanation="Payment request not found")
    return run_smart_resolution(db, intent)
