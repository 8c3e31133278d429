"""Enhanced due diligence (EDD) investigation workflow.

State machine:

    open ──► awaiting_customer_info ──► under_review ──► completed
      │              ▲                      │   ▲
      │              └──────────────────────┘   │
      └──────────────► escalated ───────────────┘ (complete)
    cancelled is reachable from every active state.

  request_information   open | under_review          -> awaiting_customer_info
  start_review          open | awaiting_customer_info -> under_review
  escalate              any active state             -> escalated (append-only log)
  complete              under_review | escalated     -> completed
  cancel                any active state             -> cancelled

Every write is a compare-and-swap on ``version``; a concurrent writer that
loses gets StaleStateError and must re-read. Only one active investigation
may exist per customer.

Regulatory basis:
  AML/CTF Rules Ch. 15.10: Enhanced customer due diligence
"""

import uuid
from collections.abc import Callable, Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog

from .config import RegionalConfig
from .errors import InvalidStateError, NotFoundError, StaleStateError, ValidationError
from .models import (
    ACTIVE_INVESTIGATION_STATUSES,
    BlockDecision,
    ChecklistEntry,
    ChecklistSection,
    Escalation,
    InformationRequest,
    Investigation,
    InvestigationStatus,
    MonitoringLevel,
    Recommendation,
    RiskAssessment,
    RiskLevel,
)
from .repository import InvestigationRepository

logger = structlog.get_logger()

MONITORING_LEVEL_FOR_RECOMMENDATION: dict[Recommendation, MonitoringLevel] = {
    Recommendation.APPROVE_RELATIONSHIP: MonitoringLevel.STANDARD,
    Recommendation.ONGOING_MONITORING: MonitoringLevel.ONGOING_REVIEW,
    Recommendation.ENHANCED_MONITORING: MonitoringLevel.ENHANCED,
    Recommendation.REJECT_RELATIONSHIP: MonitoringLevel.BLOCKED,
    Recommendation.ESCALATE_TO_SMR: MonitoringLevel.BLOCKED,
}

_RISK_LEVEL_FOR_MONITORING = {
    MonitoringLevel.STANDARD: RiskLevel.LOW,
    MonitoringLevel.ONGOING_REVIEW: RiskLevel.MEDIUM,
    MonitoringLevel.ENHANCED: RiskLevel.HIGH,
}

_ACTIVE = ACTIVE_INVESTIGATION_STATUSES


def should_trigger_edd(
    risk: RiskAssessment | None = None,
    block: BlockDecision | None = None,
    has_suspicion: bool = False,
) -> bool:
    """True when a party must be placed under enhanced due diligence."""
    if risk is not None and risk.level == RiskLevel.HIGH:
        return True
    if block is not None and block.blocked:
        return True
    return has_suspicion


def next_review_for(
    level: MonitoringLevel, completed_at: datetime, config: RegionalConfig
) -> datetime | None:
    """Next periodic review after completion; blocked relationships have none."""
    risk_level = _RISK_LEVEL_FOR_MONITORING.get(level)
    if risk_level is None:
        return None
    return completed_at + timedelta(days=config.ocdd_review_days(risk_level))


def _required(field: str, value: str | None) -> str:
    if value is None or not value.strip():
        raise ValidationError(field, "is required")
    return value.strip()


class EDDWorkflow:
    def __init__(
        self,
        repository: InvestigationRepository,
        config: RegionalConfig,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self._repo = repository
        self._config = config
        self._id_factory = id_factory
        self._clock = clock

    async def get(self, tenant_id: str, investigation_id: str) -> Investigation:
        investigation = await self._repo.get(tenant_id, investigation_id)
        if investigation is None:
            raise NotFoundError("investigation", investigation_id)
        return investigation

    async def _load(
        self,
        tenant_id: str,
        investigation_id: str,
        operation: str,
        allowed: Iterable[InvestigationStatus],
        expected_version: int | None,
    ) -> Investigation:
        current = await self.get(tenant_id, investigation_id)
        if expected_version is not None and current.version != expected_version:
            raise StaleStateError(investigation_id, expected_version, current.version)
        if current.status not in set(allowed):
            raise InvalidStateError(operation, current.status.value)
        return current

    async def _save(self, current: Investigation, **changes: Any) -> Investigation:
        changes.setdefault("updated_at", self._clock())
        updated = current.model_copy(update=changes)
        return await self._repo.update(updated, expected_version=current.version)

    async def create(
        self,
        tenant_id: str,
        customer_id: str,
        trigger_reason: str,
        triggered_by: str | None = None,
        transaction_id: str | None = None,
        assigned_to: str | None = None,
    ) -> Investigation:
        """Open an investigation. ConflictError(existing_id) if one is already active."""
        now = self._clock()
        investigation = Investigation(
            id=self._id_factory(),
            tenant_id=tenant_id,
            customer_id=_required("customer_id", customer_id),
            transaction_id=transaction_id,
            trigger_reason=_required("trigger_reason", trigger_reason),
            triggered_by=triggered_by,
            assigned_to=assigned_to,
            status=InvestigationStatus.OPEN,
            created_at=now,
            updated_at=now,
        )
        created = await self._repo.create(investigation)
        logger.warning(
            "edd_investigation_opened",
            tenant_id=tenant_id,
            investigation_id=created.id,
            customer_id=customer_id,
            trigger_reason=trigger_reason,
        )
        return created

    async def request_information(
        self,
        tenant_id: str,
        investigation_id: str,
        items: list[str],
        requested_by: str,
        deadline: datetime | None = None,
        expected_version: int | None = None,
    ) -> Investigation:
        current = await self._load(
            tenant_id, investigation_id, "request_information",
            (InvestigationStatus.OPEN, InvestigationStatus.UNDER_REVIEW), expected_version,
        )
        items = [i.strip() for i in items if i and i.strip()]
        if not items:
            raise ValidationError("items", "at least one item must be requested")
        request = InformationRequest(
            id=self._id_factory(),
            requested_at=self._clock(),
            requested_by=_required("requested_by", requested_by),
            items=items,
            deadline=deadline,
        )
        updated = await self._save(
            current,
            status=InvestigationStatus.AWAITING_CUSTOMER_INFO,
            information_requests=[*current.information_requests, request],
        )
        logger.info("edd_information_requested", investigation_id=investigation_id,
                    item_count=len(items))
        return updated

    async def start_review(
        self,
        tenant_id: str,
        investigation_id: str,
        reviewer: str,
        expected_version: int | None = None,
    ) -> Investigation:
        """Move to under_review; outstanding information requests are marked received."""
        current = await self._load(
            tenant_id, investigation_id, "start_review",
            (InvestigationStatus.OPEN, InvestigationStatus.AWAITING_CUSTOMER_INFO),
            expected_version,
        )
        now = self._clock()
        requests = [
            r.model_copy(update={"status": "received", "received_at": now})
            if r.status == "pending" else r
            for r in current.information_requests
        ]
        updated = await self._save(
            current,
            status=InvestigationStatus.UNDER_REVIEW,
            assigned_to=_required("reviewer", reviewer),
            information_requests=requests,
            updated_at=now,
        )
        logger.info("edd_review_started", investigation_id=investigation_id, reviewer=reviewer)
        return updated

    async def escalate(
        self,
        tenant_id: str,
        investigation_id: str,
        reason: str,
        escalated_by: str,
        escalated_to: str = "management",
        expected_version: int | None = None,
    ) -> Investigation:
        current = await self._load(
            tenant_id, investigation_id, "escalate", _ACTIVE, expected_version
        )
        escalation = Escalation(
            id=self._id_factory(),
            escalated_at=self._clock(),
            escalated_by=_required("escalated_by", escalated_by),
            escalated_to=escalated_to,
            reason=_required("reason", reason),
        )
        updated = await self._save(
            current,
            status=InvestigationStatus.ESCALATED,
            escalations=[*current.escalations, escalation],
        )
        logger.warning("edd_investigation_escalated", investigation_id=investigation_id,
                       escalated_to=escalated_to, escalation_count=len(updated.escalations))
        return updated

    async def complete(
        self,
        tenant_id: str,
        investigation_id: str,
        findings: str,
        risk_summary: str,
        recommendation: Recommendation | str,
        completed_by: str | None = None,
        expected_version: int | None = None,
    ) -> Investigation:
        current = await self._load(
            tenant_id, investigation_id, "complete",
            (InvestigationStatus.UNDER_REVIEW, InvestigationStatus.ESCALATED), expected_version,
        )
        try:
            recommendation = Recommendation(recommendation)
        except ValueError:
            raise ValidationError(
                "recommendation",
                f"must be one of {', '.join(r.value for r in Recommendation)}",
            ) from None

        now = self._clock()
        level = MONITORING_LEVEL_FOR_RECOMMENDATION[recommendation]
        updated = await self._save(
            current,
            status=InvestigationStatus.COMPLETED,
            findings=_required("findings", findings),
            risk_summary=_required("risk_summary", risk_summary),
            recommendation=recommendation,
            monitoring_level=level,
            next_review_at=next_review_for(level, now, self._config),
            completed_at=now,
            updated_at=now,
        )
        logger.warning(
            "edd_investigation_completed",
            investigation_id=investigation_id,
            customer_id=current.customer_id,
            recommendation=recommendation.value,
            monitoring_level=level.value,
            completed_by=completed_by,
        )
        return updated

    async def cancel(
        self,
        tenant_id: str,
        investigation_id: str,
        reason: str,
        cancelled_by: str | None = None,
        expected_version: int | None = None,
    ) -> Investigation:
        current = await self._load(
            tenant_id, investigation_id, "cancel", _ACTIVE, expected_version
        )
        updated = await self._save(
            current,
            status=InvestigationStatus.CANCELLED,
            cancellation_reason=_required("reason", reason),
        )
        logger.info("edd_investigation_cancelled", investigation_id=investigation_id,
                    cancelled_by=cancelled_by)
        return updated

    async def update_checklist(
        self,
        tenant_id: str,
        investigation_id: str,
        section: ChecklistSection | str,
        fields: Mapping[str, Any],
        reviewed_by: str | None = None,
        expected_version: int | None = None,
    ) -> Investigation:
        """Field-level merge into one checklist section; not a state transition.

        New fields overwrite, omitted fields are kept, and only the touched
        section's ``reviewed_at`` is stamped.
        """
        try:
            section = ChecklistSection(section)
        except ValueError:
            raise ValidationError(
                "section", f"must be one of {', '.join(s.value for s in ChecklistSection)}"
            ) from None
        current = await self._load(
            tenant_id, investigation_id, "update_checklist", _ACTIVE, expected_version
        )
        now = self._clock()
        existing = current.checklist.get(section, ChecklistEntry())
        entry = ChecklistEntry(
            fields={**existing.fields, **fields},
            reviewed_at=now,
            reviewed_by=reviewed_by or existing.reviewed_by,
        )
        return await self._save(
            current, checklist={**current.checklist, section: entry}, updated_at=now
        )
