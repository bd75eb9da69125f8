"""Data models for the Bacon console."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, SecretStr


class BakeState(str, Enum):
    """Baker state reported by the node."""

    CAN_BAKE = "canbake"
    LOW_BALANCE = "lowbal"
    NOT_REGISTERED = "noreg"
    NO_SIGNER = "nosign"


class RecentActivity(BaseModel):
    """Last bake or endorsement injected by the node."""

    level: int = 0
    cycle: int = 0
    hash: str = ""


class NextBake(BaseModel):
    level: int = 0
    cycle: int = 0
    priority: int = 0


class NextEndorsement(BaseModel):
    level: int = 0
    cycle: int = 0


class NodeStatus(BaseModel):
    """Aggregate node status snapshot from /api/status."""

    delegate: str = ""
    level: int = 0
    cycle: int = 0
    cycle_position: int = 0
    block_hash: str = ""
    state: BakeState | None = None

    prev_bake: RecentActivity = Field(default_factory=RecentActivity)
    prev_endorse: RecentActivity = Field(default_factory=RecentActivity)
    next_bake: NextBake = Field(default_factory=NextBake)
    next_endorse: NextEndorsement = Field(default_factory=NextEndorsement)

    timestamp: datetime | None = None
    error: str | None = None

    @classmethod
    def from_api(cls, data: dict) -> "NodeStatus":
        """Build a snapshot from the node's short-key JSON."""
        try:
            state = BakeState(data.get("state"))
        except ValueError:
            state = None

        ts = data.get("ts")
        return cls(
            delegate=data.get("pkh") or "",
            level=data.get("level", 0),
            cycle=data.get("cycle", 0),
            cycle_position=data.get("cycleposition", 0),
            block_hash=data.get("hash") or "",
            state=state,
            prev_bake=RecentActivity(
                level=data.get("pbl", 0), cycle=data.get("pbc", 0), hash=data.get("pbh") or ""
            ),
            prev_endorse=RecentActivity(
                level=data.get("pel", 0), cycle=data.get("pec", 0), hash=data.get("peh") or ""
            ),
            next_bake=NextBake(
                level=data.get("nbl", 0), cycle=data.get("nbc", 0), priority=data.get("nbp", 0)
            ),
            next_endorse=NextEndorsement(level=data.get("nel", 0), cycle=data.get("nec", 0)),
            timestamp=datetime.fromtimestamp(ts, tz=timezone.utc) if ts else None,
            error=data.get("error") or None,
        )

    @property
    def has_baking_rights(self) -> bool:
        return self.next_bake.level > 0

    @property
    def has_endorsing_rights(self) -> bool:
        return self.next_endorse.level > 0

    def cycle_progress(self, blocks_per_cycle: int) -> float:
        """Percentage of the current cycle already produced."""
        if blocks_per_cycle <= 0:
            return 0.0
        return self.cycle_position / blocks_per_cycle * 100


class DelegateBalance(BaseModel):
    """Delegate balances in mutez, derived from the delegates RPC."""

    frozen: int = 0
    spendable: int = 0
    total: int = 0
    staking_balance: int = 0
    delegated_balance: int = 0
    delegator_count: int = 0

    @classmethod
    def from_delegate_info(cls, data: dict) -> "DelegateBalance":
        balance = int(data.get("balance", 0))
        frozen = int(data.get("frozen_balance", 0))
        return cls(
            frozen=frozen,
            spendable=balance - frozen,
            total=balance,
            staking_balance=int(data.get("staking_balance", 0)),
            delegated_balance=int(data.get("delegated_balance", 0)),
            delegator_count=len(data.get("delegated_contracts") or []),
        )


class PayoutStatus(str, Enum):
    UNPAID = "unpaid"
    IN_PROGRESS = "inprog"
    DONE = "done"

    @classmethod
    def from_wire(cls, raw: str | None) -> "PayoutStatus":
        """Anything the node does not mark as in progress or done is unpaid."""
        try:
            return cls(raw)
        except ValueError:
            return cls.UNPAID


class PayoutCycleMetadata(BaseModel):
    """Reward metadata for one payout cycle."""

    cycle: int
    baker_balance: int = 0
    staking_balance: int = 0
    delegated_balance: int = 0
    delegator_count: int = 0
    block_reward: int = 0
    fee_reward: int = 0
    baker_fee: Decimal = Decimal(0)
    status: PayoutStatus = PayoutStatus.UNPAID

    @classmethod
    def from_api(cls, data: dict) -> "PayoutCycleMetadata":
        return cls(
            cycle=data["c"],
            baker_balance=data.get("b", 0),
            staking_balance=data.get("sb", 0),
            delegated_balance=data.get("db", 0),
            delegator_count=data.get("nd", 0),
            block_reward=data.get("br", 0),
            fee_reward=data.get("fr", 0),
            baker_fee=Decimal(str(data.get("f", 0))),
            status=PayoutStatus.from_wire(data.get("st")),
        )

    @property
    def total_rewards(self) -> int:
        return self.block_reward + self.fee_reward


class PayoutDetailRecord(BaseModel):
    """One delegator's share of a payout cycle."""

    delegator_address: str
    delegator_balance: int = 0
    share_percent: Decimal = Decimal(0)
    reward_amount: int = 0
    payout_op_hash: str | None = None

    @classmethod
    def from_api(cls, data: dict) -> "PayoutDetailRecord":
        return cls(
            delegator_address=data["d"],
            delegator_balance=data.get("b", 0),
            share_percent=Decimal(str(data.get("p", 0))),
            reward_amount=data.get("r", 0),
            payout_op_hash=data.get("o") or None,
        )

    @property
    def is_paid(self) -> bool:
        return self.payout_op_hash is not None


class CycleDetail(BaseModel):
    """Detail snapshot of a payout cycle: metadata plus per-delegator records."""

    metadata: PayoutCycleMetadata
    records: list[PayoutDetailRecord]

    @classmethod
    def from_api(cls, cycle: int, data: dict) -> "CycleDetail":
        metadata = dict(data.get("metadata") or {})
        metadata.setdefault("c", cycle)
        payouts = data.get("payouts") or {}
        records = [PayoutDetailRecord.from_api(payouts[k]) for k in sorted(payouts)]
        return cls(metadata=PayoutCycleMetadata.from_api(metadata), records=records)

    @property
    def cycle(self) -> int:
        return self.metadata.cycle

    @property
    def status(self) -> PayoutStatus:
        return self.metadata.status

    @property
    def total_payouts(self) -> int:
        return sum(r.reward_amount for r in self.records)


class KeyMaterial(BaseModel):
    """Key returned by the wizard; the secret is only present while displayed."""

    secret_key: SecretStr | None = None
    public_key_hash: str


class LedgerInfo(BaseModel):
    """Ledger device detected by the node."""

    version: str = ""
    pkh: str = ""
    bip_path: str = ""

    @classmethod
    def from_api(cls, data: dict) -> "LedgerInfo":
        return cls(
            version=data.get("version") or "",
            pkh=data.get("pkh") or "",
            bip_path=data.get("bipPath") or "",
        )


class VotingPhase(str, Enum):
    PROPOSAL = "proposal"
    EXPLORATION = "exploration"
    COOLDOWN = "cooldown"
    PROMOTION = "promotion"
    ADOPTION = "adoption"


class Ballot(str, Enum):
    YAY = "yay"
    NAY = "nay"
    PASS = "pass"


class Proposal(BaseModel):
    hash: str
    upvotes: int = 0


class VotingPeriod(BaseModel):
    """Current governance period as seen by the operator."""

    phase: VotingPhase
    period_index: int
    remaining_blocks: int = 0
    proposals: list[Proposal] = Field(default_factory=list)
    current_proposal: str | None = None
    has_voted: bool = False


class Severity(str, Enum):
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    DANGER = "danger"


class Notification(BaseModel):
    """Ephemeral operator-facing alert."""

    id: int
    title: str
    message: str
    severity: Severity = Severity.INFO
    auto_hide_ms: int = 0  # 0 = stays until dismissed
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class Alert(BaseModel):
    """Inline alert shown inside a workflow, not on the notification bus."""

    severity: Severity
    message: str


class TelegramConfig(BaseModel):
    chat_ids: list[int] = Field(default_factory=list)
    api_key: str = ""
    enabled: bool = False


class EmailConfig(BaseModel):
    smtp_host: str = ""


class ConsoleSettings(BaseModel):
    """Node-side settings from /api/settings/."""

    endpoints: dict[int, str] = Field(default_factory=dict)
    baker_fee: int = 0
    telegram: TelegramConfig = Field(default_factory=TelegramConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)

    @classmethod
    def from_api(cls, data: dict) -> "ConsoleSettings":
        notifications = data.get("notifications") or {}
        telegram = notifications.get("telegram") or {}
        email = notifications.get("email") or {}
        baker = data.get("baker") or {}
        return cls(
            endpoints={int(k): v for k, v in (data.get("endpoints") or {}).items()},
            baker_fee=int(baker.get("bakerfee") or 0),
            telegram=TelegramConfig(
                chat_ids=telegram.get("chatids") or [],
                api_key=telegram.get("apikey") or "",
                enabled=bool(telegram.get("enabled")),
            ),
            email=EmailConfig(smtp_host=email.get("smtphost") or ""),
        )
