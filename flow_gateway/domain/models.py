"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class IntentType(str, Enum):
    PAY_MERCHANT = "PayMerchant"
    SEND_MONEY = "SendMoney"
    REQUEST_MONEY = "RequestMoney"
    PAY_BILL = "PayBill"


class FundingSourceType(str, Enum):
    WALLET = "wallet"
    BANK = "bank"
    DEBIT_CARD = "debit_card"
    CREDIT_CARD = "credit_card"

    @property
    def is_card(self) -> bool:
        return self in (FundingSourceType.DEBIT_CARD, FundingSourceType.CREDIT_CARD)


class ConnectorStatus(str, Enum):
    AVAILABLE = "available"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


class ResolutionAction(str, Enum):
    USE_SINGLE_SOURCE = "USE_SINGLE_SOURCE"
    TOP_UP_WALLET = "TOP_UP_WALLET"
    USE_FALLBACK = "USE_FALLBACK"
    REQUIRES_CONFIRMATION = "REQUIRES_CONFIRMATION"
    BLOCKED = "BLOCKED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"


class StepAction(str, Enum):
    CHARGE = "charge"
    TOP_UP = "top_up"


class FallbackPreference(str, Enum):
    USE_CARD = "use_card"
    TOP_UP_WALLET = "top_up_wallet"
    ASK_EACH_TIME = "ask_each_time"


class ResolutionStrategy(str, Enum):
    PRIORITY = "priority"
    SMART = "smart"


class ExecutionMode(str, Enum):
    SYNC = "sync"
    ASYNC = "async"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not TransactionStatus.PENDING


class FailureType(str, Enum):
    INSUFFICIENT_FUNDS = "insufficient_funds"
    CONNECTOR_UNAVAILABLE = "connector_unavailable"
    USER_PAUSED = "user_paused"
    RISK_BLOCKED = "risk_blocked"
    IDENTITY_BLOCKED = "identity_blocked"
    UNKNOWN = "unknown"


class GateCode(str, Enum):
    IDENTITY_BLOCKED = "IDENTITY_BLOCKED"
    DEVICE_UNTRUSTED = "DEVICE_UNTRUSTED"
    CONSENT_MISSING = "CONSENT_MISSING"
    CONSENT_REVOKED = "CONSENT_REVOKED"
    CONSENT_EXPIRED = "CONSENT_EXPIRED"


class RuntimeMode(str, Enum):
    """Gate behaviour. PERMISSIVE exists for demos and must be passed explicitly."""

    STRICT = "strict"
    PERMISSIVE = "permissive"


@dataclass
class FundingSource:
    """A linked wallet, bank account or card"""

    id: str
    name: str
    type: FundingSourceType
    balance_cents: int
    priority: int  # lower = preferred
    is_linked: bool = True
    is_available: bool = True
    currency: str = "MYR"
    max_auto_topup_cents: Optional[int] = None
    require_confirm_above_cents: Optional[int] = None


@dataclass
class PaymentRequest:
    amount_cents: int
    currency: str
    intent_id: str


@dataclass
class ResolutionStep:
    """One ordered step of a plan; a top_up always precedes its charge"""

    action: StepAction
    source_id: Optional[str]
    source_type: Optional[FundingSourceType]
    amount_cents: int
    source_name: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.value,
            "source_id": self.source_id,
            "source_type": self.source_type.value if self.source_type else None,
            "source_name": self.source_name,
            "amount_cents": self.amount_cents,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResolutionStep":
        source_type = data.get("source_type")
        return cls(
            action=StepAction(data["action"]),
            source_id=data.get("source_id"),
            source_type=FundingSourceType(source_type) if source_type else None,
            amount_cents=int(data["amount_cents"]),
            source_name=data.get("source_name"),
            description=data.get("description"),
        )


@dataclass
class PaymentResolution:
    """Output of the priority waterfall"""

    action: ResolutionAction
    steps: List[ResolutionStep]
    requires_confirmation: bool
    total_amount_cents: int
    confirmation_reason: Optional[str] = None
    blocked_reason: Optional[str] = None
    preferred_card: bool = False


@dataclass
class GuardrailConfig:
    max_auto_topup_cents: int = 10_000
    max_single_payment_auto_cents: int = 5_000
    require_confirmation_above_cents: int = 50_000
    daily_auto_limit_cents: int = 20_000


@dataclass
class GuardrailCheck:
    can_proceed_auto: bool
    requires_confirmation: bool
    reason: Optional[str] = None
    blocked_reason: Optional[str] = None


@dataclass
class UserPaymentState:
    daily_auto_approved_cents: int
    last_reset_date: str  # ISO date, e.g. "2026-01-31"


@dataclass
class GateResult:
    passed: bool
    blocked_reason: Optional[str] = None
    blocked_code: Optional[GateCode] = None


@dataclass
class RailCandidate:
    """A connected rail joined with its funding source (by name)"""

    name: str
    connector_id: str
    type: str  # wallet | bank | card | biller
    status: ConnectorStatus
    balance_cents: int
    priority: int
    capabilities: Dict[str, bool] = field(default_factory=dict)
    funding_source_id: Optional[str] = None


@dataclass
class RailScores:
    compatibility: int
    balance: int
    priority: int
    history: int
    health: int


@dataclass
class ScoredRail:
    rail: RailCandidate
    scores: RailScores
    total_score: float
    requires_top_up: bool = False
    top_up_amount_cents: int = 0
    explanation: str = ""

    @property
    def name(self) -> str:
        return self.rail.name


@dataclass
class SmartResolutionContext:
    user_id: str
    amount_cents: int
    intent_type: IntentType
    merchant_rails: Optional[List[str]] = None
    recipient_wallets: Optional[List[str]] = None
    recipient_preferred_wallet: Optional[str] = None


@dataclass
class TopUpSource:
    name: str
    source_id: str
    source_type: FundingSourceType


@dataclass
class SmartResolutionResult:
    success: bool
    explanation: str
    alternatives: List[ScoredRail] = field(default_factory=list)
    recommended_rail: Optional[ScoredRail] = None
    requires_top_up: bool = False
    top_up_amount_cents: Optional[int] = None
    top_up_source: Optional[TopUpSource] = None


@dataclass
class ConnectorCallResult:
    """Typed outcome of a single connector call"""

    success: bool
    failure_type: Optional[FailureType] = None
    error: Optional[str] = None
    latency_ms: float = 0.0


@dataclass
class TransactionSignature:
    id: str
    signature: str
    verified: bool


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    limit: int
    reset_at: str


@dataclass
class AuditLogResult:
    logged: bool
    id: str
    hash: str


@dataclass
class SecurityCheckResult:
    approved: bool
    signature: Optional[TransactionSignature] = None
    rate_limit: Optional[RateLimitResult] = None
    error: Optional[str] = None
    failure_type: Optional[FailureType] = None
