"""Deterministic fallback plan builder.

When every provider in a chain fails, the user still gets a plan built by
simple rules from their own pipeline: which deals have stalled, which
high-value deals are at risk, and what to do next. No model is called and no
randomness is involved; the only time input is the ``now`` argument.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


STAGNATION_THRESHOLDS: Dict[str, int] = {
    # Early stages move quickly
    "lead": 7,
    "lead_captured": 7,
    "lead_generation": 7,
    "lead_identified": 7,
    "lead_qualification": 10,
    "lead_qualified": 10,
    "prospecting": 7,
    # Initial contact
    "contacted": 10,
    "contact": 10,
    "initial_screening": 10,
    "qualification": 14,
    # Discovery
    "discovery": 14,
    "discovery_demo": 14,
    "needs_identified": 14,
    "scope_defined": 14,
    # Proposal and contract
    "quote": 14,
    "proposal": 14,
    "proposal_sent": 14,
    "contract": 14,
    "contract_sent": 14,
    # Final stages
    "negotiation": 21,
    "approval": 21,
    "term_sheet_presented": 21,
    # Invoicing
    "invoice": 14,
    "invoice_sent": 14,
    "payment": 14,
    "payment_received": 7,
}
DEFAULT_STAGNATION_DAYS = 14

HIGH_VALUE_THRESHOLD = 10000
MAX_STALLED = 10
MAX_HIGH_VALUE = 5
MAX_TASKS = 5
FOLLOW_UP_DAYS = 7
RECENT_DAYS = 7


class DealStatus(str, Enum):
    OPEN = "open"
    WON = "won"
    LOST = "lost"


class TaskPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timezone-aware UTC copy of ``value``; naive values are read as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class DealRecord:
    """The caller's view of one pipeline deal."""
    id: str
    title: str
    value: float
    stage: str
    created_at: datetime
    status: DealStatus = DealStatus.OPEN
    updated_at: Optional[datetime] = None
    stage_changed_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DealRecord":
        def _dt(value: Any) -> Optional[datetime]:
            if value is not None and not isinstance(value, datetime):
                value = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
            return as_utc(value)

        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or data.get("client") or "Unknown"),
            value=float(data.get("value") or 0),
            stage=str(data.get("stage") or "unknown"),
            created_at=_dt(data["created_at"]),
            status=DealStatus(data.get("status", "open")),
            updated_at=_dt(data.get("updated_at")),
            stage_changed_at=_dt(data.get("stage_changed_at")),
            last_activity_at=_dt(data.get("last_activity_at")),
            closed_at=_dt(data.get("closed_at")),
        )

    def entered_stage_at(self) -> datetime:
        return as_utc(self.stage_changed_at or self.updated_at or self.created_at)

    def last_touched_at(self) -> datetime:
        return as_utc(self.last_activity_at or self.updated_at or self.stage_changed_at or self.created_at)

    def closed_on(self) -> Optional[datetime]:
        return as_utc(self.closed_at or self.last_activity_at or self.updated_at)


@dataclass(frozen=True)
class PlanTask:
    priority: TaskPriority
    action: str
    reason: str
    reference_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority": self.priority.value,
            "action": self.action,
            "reason": self.reason,
            "referenceId": self.reference_id,
        }


@dataclass(frozen=True)
class StalledDeal:
    deal: DealRecord
    days_in_stage: int


@dataclass(frozen=True)
class FallbackPlan:
    summary: str
    headline: str
    bullets: List[str]
    tasks: List[PlanTask]
    stats: Dict[str, Any]
    generated_at: datetime
    mode: str = "basic"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "summary": self.summary,
            "headline": self.headline,
            "bullets": list(self.bullets),
            "tasks": [t.to_dict() for t in self.tasks],
            "stats": dict(self.stats),
            "generatedAt": self.generated_at.isoformat(),
        }


@dataclass
class PipelineSnapshot:
    """Rule buckets computed from the deal list."""
    total_deals: int
    open_deals: List[DealRecord]
    pipeline_value: float
    deals_by_stage: Dict[str, Dict[str, float]]
    stalled: List[StalledDeal]
    high_value_at_risk: List[StalledDeal]
    needs_follow_up: int
    recently_won_value: float
    recently_lost: int
    stage_leaders: Dict[str, DealRecord] = field(default_factory=dict)


def stagnation_threshold(stage: str) -> int:
    return STAGNATION_THRESHOLDS.get(stage, DEFAULT_STAGNATION_DAYS)


def _money(value: float) -> str:
    return f"${value:,.0f}"


def _plural(count: int, singular: str, plural: str) -> str:
    return singular if count == 1 else plural


def build_snapshot(deals: Sequence[DealRecord], now: datetime) -> PipelineSnapshot:
    """Partition deals into the buckets the plan rules use."""
    now = as_utc(now)
    week_ago = now - timedelta(days=FOLLOW_UP_DAYS)
    recent_cutoff = now - timedelta(days=RECENT_DAYS)

    open_deals = sorted((d for d in deals if d.status == DealStatus.OPEN), key=lambda d: d.id)

    deals_by_stage: Dict[str, Dict[str, float]] = {}
    stage_leaders: Dict[str, DealRecord] = {}
    for deal in open_deals:
        bucket = deals_by_stage.setdefault(deal.stage, {"count": 0, "value": 0.0})
        bucket["count"] += 1
        bucket["value"] += deal.value
        leader = stage_leaders.get(deal.stage)
        if leader is None or deal.value > leader.value:
            stage_leaders[deal.stage] = deal

    stalled: List[StalledDeal] = []
    for deal in open_deals:
        days = (now - deal.entered_stage_at()).days
        if days > stagnation_threshold(deal.stage):
            stalled.append(StalledDeal(deal=deal, days_in_stage=days))
    stalled.sort(key=lambda s: (-s.deal.value, s.deal.id))
    stalled = stalled[:MAX_STALLED]

    high_value = [s for s in stalled if s.deal.value >= HIGH_VALUE_THRESHOLD][:MAX_HIGH_VALUE]

    needs_follow_up = sum(1 for d in open_deals if d.last_touched_at() < week_ago)

    def _closed_recently(deal: DealRecord) -> bool:
        closed = deal.closed_on()
        return closed is not None and closed >= recent_cutoff

    recently_won_value = sum(d.value for d in deals if d.status == DealStatus.WON and _closed_recently(d))
    recently_lost = sum(1 for d in deals if d.status == DealStatus.LOST and _closed_recently(d))

    return PipelineSnapshot(
        total_deals=len(deals),
        open_deals=open_deals,
        pipeline_value=sum(d.value for d in open_deals),
        deals_by_stage=deals_by_stage,
        stalled=stalled,
        high_value_at_risk=high_value,
        needs_follow_up=needs_follow_up,
        recently_won_value=recently_won_value,
        recently_lost=recently_lost,
        stage_leaders=stage_leaders,
    )


def _headline(snapshot: PipelineSnapshot) -> str:
    if not snapshot.open_deals:
        return "Your pipeline is empty - time to prospect!"
    if len(snapshot.stalled) > 3:
        return f"{len(snapshot.stalled)} deals need your attention today"
    if snapshot.high_value_at_risk:
        return "High-value opportunity needs focus"
    return "Here's your pipeline at a glance"


def _bullets(snapshot: PipelineSnapshot) -> List[str]:
    bullets: List[str] = []
    active = len(snapshot.open_deals)
    if active:
        bullets.append(
            f"You have {active} active {_plural(active, 'deal', 'deals')} worth "
            f"{_money(snapshot.pipeline_value)} in your pipeline."
        )
    else:
        bullets.append("No active deals in your pipeline yet.")

    stalled = len(snapshot.stalled)
    if stalled:
        bullets.append(
            f"{stalled} {_plural(stalled, 'deal is', 'deals are')} stagnant and may be losing momentum."
        )

    if snapshot.needs_follow_up:
        count = snapshot.needs_follow_up
        bullets.append(
            f"{count} {_plural(count, 'deal hasn', 'deals haven')}'t been touched in over a week."
        )

    if snapshot.recently_won_value > 0:
        bullets.append(f"Great work! You closed {_money(snapshot.recently_won_value)} in the past week.")

    if snapshot.recently_lost:
        count = snapshot.recently_lost
        bullets.append(f"{count} {_plural(count, 'deal was', 'deals were')} lost in the past week.")

    return bullets


_STAGE_FOCUS_ORDER = ("discovery", "proposal_sent", "negotiation", "verbal_commit", "contract_sent")


def _tasks(snapshot: PipelineSnapshot) -> List[PlanTask]:
    tasks: List[PlanTask] = []

    if not snapshot.open_deals:
        tasks.append(PlanTask(
            priority=TaskPriority.HIGH,
            action="Add new leads to your pipeline",
            reason="An empty pipeline means no revenue momentum",
        ))
        return tasks

    if snapshot.high_value_at_risk:
        top = snapshot.high_value_at_risk[0]
        tasks.append(PlanTask(
            priority=TaskPriority.HIGH,
            action=f"Reach out to {top.deal.title} ({_money(top.deal.value)})",
            reason=f"This high-value deal in {top.deal.stage} stage has been stagnant",
            reference_id=top.deal.id,
        ))

    high_value_ids = {s.deal.id for s in snapshot.high_value_at_risk}
    for item in [s for s in snapshot.stalled if s.deal.id not in high_value_ids][:2]:
        tasks.append(PlanTask(
            priority=TaskPriority.MEDIUM,
            action=f"Follow up with {item.deal.title}",
            reason=f"{item.days_in_stage} days in {item.deal.stage} stage - needs momentum",
            reference_id=item.deal.id,
        ))

    for stage in _STAGE_FOCUS_ORDER:
        data = snapshot.deals_by_stage.get(stage)
        if not data:
            continue
        count = int(data["count"])
        if stage == "proposal_sent" and count > 2:
            tasks.append(PlanTask(
                priority=TaskPriority.MEDIUM,
                action=f"Review your {count} proposals awaiting response",
                reason="Multiple proposals pending - consider follow-up calls",
                reference_id=snapshot.stage_leaders[stage].id,
            ))
            break
        if stage == "negotiation":
            tasks.append(PlanTask(
                priority=TaskPriority.HIGH,
                action=f"Focus on closing your {count} {_plural(count, 'deal', 'deals')} in negotiation",
                reason=f"{_money(data['value'])} ready to close",
                reference_id=snapshot.stage_leaders[stage].id,
            ))
            break

    if len(tasks) < 3:
        tasks.append(PlanTask(
            priority=TaskPriority.LOW,
            action="Review your pipeline stages",
            reason="Look for deals that can be advanced today",
        ))

    return tasks[:MAX_TASKS]


def build_fallback_plan(deals: Sequence[DealRecord], now: datetime) -> FallbackPlan:
    """Build a rule-based plan. Always returns a non-empty summary.

    Args:
        deals: The caller's deals; may be empty
        now: Reference time for every age calculation and ``generated_at``
    """
    now = as_utc(now)
    snapshot = build_snapshot(deals, now)
    headline = _headline(snapshot)
    bullets = _bullets(snapshot)
    separator = " " if headline.endswith((".", "!", "?")) else ". "

    return FallbackPlan(
        summary=f"{headline}{separator}{bullets[0]}",
        headline=headline,
        bullets=bullets,
        tasks=_tasks(snapshot),
        stats={
            "totalDeals": snapshot.total_deals,
            "activeDeals": len(snapshot.open_deals),
            "totalPipelineValue": snapshot.pipeline_value,
            "stagnantCount": len(snapshot.stalled),
            "highValueAtRiskCount": len(snapshot.high_value_at_risk),
            "needsFollowUp": snapshot.needs_follow_up,
        },
        generated_at=now,
    )


_PRIORITY_MARKERS = {
    TaskPriority.HIGH: "!",
    TaskPriority.MEDIUM: "->",
    TaskPriority.LOW: "o",
}


def format_plan_as_text(plan: FallbackPlan) -> str:
    """Render a plan as plain text for chat or email surfaces."""
    lines = [plan.headline, ""]
    lines.extend(f"- {bullet}" for bullet in plan.bullets)

    if plan.tasks:
        lines.append("")
        lines.append("RECOMMENDED ACTIONS:")
        for index, task in enumerate(plan.tasks, start=1):
            lines.append(f"{index}. {_PRIORITY_MARKERS[task.priority]} {task.action}")
            lines.append(f"   {task.reason}")

    lines.append("")
    lines.append("(Basic summary - connect an AI provider in Settings for personalized insights)")
    return "\n".join(lines)
