"""Tests for the EDD investigation workflow state machine."""

import asyncio
from datetime import UTC, datetime, timedelta

import pytest

from src.domains.compliance.edd import EDDWorkflow, next_review_for, should_trigger_edd
from src.domains.compliance.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    StaleStateError,
    ValidationError,
)
from src.domains.compliance.models import (
    BlockDecision,
    ChecklistSection,
    InvestigationStatus,
    MonitoringLevel,
    Recommendation,
    RiskAssessment,
    RiskLevel,
)

TENANT = "tenant-a"


@pytest.fixture
def workflow(investigation_repo, au_config, ids, clock) -> EDDWorkflow:
    return EDDWorkflow(investigation_repo, au_config, id_factory=ids, clock=clock)


async def _open(workflow: EDDWorkflow, customer_id: str = "cust-1"):
    return await workflow.create(TENANT, customer_id, "High risk score 75", triggered_by="system")


async def _under_review(workflow: EDDWorkflow):
    inv = await _open(workflow)
    return await workflow.start_review(TENANT, inv.id, reviewer="analyst-1")


class TestTrigger:
    def test_triggers(self):
        assert should_trigger_edd(risk=RiskAssessment(score=60, level=RiskLevel.HIGH))
        assert should_trigger_edd(block=BlockDecision(True, "Confirmed sanctions match"))
        assert should_trigger_edd(has_suspicion=True)

    def test_no_trigger(self):
        assert not should_trigger_edd()
        assert not should_trigger_edd(
            risk=RiskAssessment(score=59, level=RiskLevel.MEDIUM), block=BlockDecision(False)
        )


class TestCreate:
    @pytest.mark.asyncio
    async def test_opens_investigation(self, workflow, clock):
        inv = await _open(workflow)
        assert inv.status == InvestigationStatus.OPEN
        assert inv.version == 1
        assert inv.created_at == clock.now
        assert inv.is_active

    @pytest.mark.asyncio
    async def test_second_active_investigation_conflicts(self, workflow):
        first = await _open(workflow)
        with pytest.raises(ConflictError) as exc_info:
            await _open(workflow)
        assert exc_info.value.existing_id == first.id

    @pytest.mark.asyncio
    async def test_concurrent_creates_yield_one_investigation(self, workflow):
        results = await asyncio.gather(
            *(_open(workflow) for _ in range(5)), return_exceptions=True
        )
        created = [r for r in results if not isinstance(r, Exception)]
        assert len(created) == 1
        assert all(
            isinstance(r, ConflictError) and r.existing_id == created[0].id
            for r in results if isinstance(r, Exception)
        )

    @pytest.mark.asyncio
    async def test_new_investigation_allowed_after_completion(self, workflow):
        inv = await _under_review(workflow)
        await workflow.complete(TENANT, inv.id, "Source of funds verified", "Low residual risk",
                                Recommendation.APPROVE_RELATIONSHIP)
        again = await _open(workflow)
        assert again.id != inv.id

    @pytest.mark.asyncio
    async def test_trigger_reason_required(self, workflow):
        with pytest.raises(ValidationError):
            await workflow.create(TENANT, "cust-1", "  ")

    @pytest.mark.asyncio
    async def test_get_unknown(self, workflow):
        with pytest.raises(NotFoundError):
            await workflow.get(TENANT, "missing")

    @pytest.mark.asyncio
    async def test_get_is_tenant_scoped(self, workflow):
        inv = await _open(workflow)
        with pytest.raises(NotFoundError):
            await workflow.get("tenant-b", inv.id)


class TestTransitions:
    @pytest.mark.asyncio
    async def test_information_round_trip(self, workflow, clock):
        inv = await _open(workflow)
        inv = await workflow.request_information(
            TENANT, inv.id, ["Payslips", "Bank statements"], requested_by="analyst-1"
        )
        assert inv.status == InvestigationStatus.AWAITING_CUSTOMER_INFO
        assert inv.information_requests[0].status == "pending"

        clock.now += timedelta(days=2)
        inv = await workflow.start_review(TENANT, inv.id, reviewer="analyst-1")
        assert inv.status == InvestigationStatus.UNDER_REVIEW
        assert inv.assigned_to == "analyst-1"
        assert inv.information_requests[0].status == "received"
        assert inv.information_requests[0].received_at == clock.now

    @pytest.mark.asyncio
    async def test_request_requires_items(self, workflow):
        inv = await _open(workflow)
        with pytest.raises(ValidationError):
            await workflow.request_information(TENANT, inv.id, [" "], requested_by="analyst-1")

    @pytest.mark.asyncio
    async def test_escalations_are_append_only(self, workflow):
        inv = await _open(workflow)
        inv = await workflow.escalate(TENANT, inv.id, "PEP exposure", escalated_by="analyst-1")
        inv = await workflow.escalate(TENANT, inv.id, "Adverse media", escalated_by="mlro",
                                      escalated_to="board")
        assert inv.status == InvestigationStatus.ESCALATED
        assert [e.reason for e in inv.escalations] == ["PEP exposure", "Adverse media"]
        assert inv.escalations[1].escalated_to == "board"

    @pytest.mark.asyncio
    async def test_complete_from_escalated(self, workflow, clock):
        inv = await _open(workflow)
        inv = await workflow.escalate(TENANT, inv.id, "PEP exposure", escalated_by="analyst-1")
        inv = await workflow.complete(TENANT, inv.id, "Wealth explained", "Residual PEP risk",
                                      "enhanced_monitoring")
        assert inv.status == InvestigationStatus.COMPLETED
        assert inv.monitoring_level == MonitoringLevel.ENHANCED
        assert inv.next_review_at == clock.now + timedelta(days=90)
        assert inv.completed_at == clock.now
        assert not inv.is_active

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "recommendation,level,has_review",
        [
            (Recommendation.APPROVE_RELATIONSHIP, MonitoringLevel.STANDARD, True),
            (Recommendation.ONGOING_MONITORING, MonitoringLevel.ONGOING_REVIEW, True),
            (Recommendation.REJECT_RELATIONSHIP, MonitoringLevel.BLOCKED, False),
            (Recommendation.ESCALATE_TO_SMR, MonitoringLevel.BLOCKED, False),
        ],
    )
    async def test_recommendation_sets_monitoring(self, workflow, recommendation, level, has_review):
        inv = await _under_review(workflow)
        inv = await workflow.complete(TENANT, inv.id, "Findings", "Summary", recommendation)
        assert inv.monitoring_level == level
        assert (inv.next_review_at is not None) == has_review

    @pytest.mark.asyncio
    async def test_unknown_recommendation(self, workflow):
        inv = await _under_review(workflow)
        with pytest.raises(ValidationError):
            await workflow.complete(TENANT, inv.id, "Findings", "Summary", "close_account")

    @pytest.mark.asyncio
    async def test_complete_requires_findings(self, workflow):
        inv = await _under_review(workflow)
        with pytest.raises(ValidationError):
            await workflow.complete(TENANT, inv.id, "", "Summary", "approve_relationship")

    @pytest.mark.asyncio
    async def test_cannot_complete_from_open(self, workflow):
        inv = await _open(workflow)
        with pytest.raises(InvalidStateError) as exc_info:
            await workflow.complete(TENANT, inv.id, "F", "S", "approve_relationship")
        assert exc_info.value.current_state == "open"

    @pytest.mark.asyncio
    async def test_terminal_states_reject_everything(self, workflow):
        inv = await _open(workflow)
        inv = await workflow.cancel(TENANT, inv.id, "Customer exited", cancelled_by="ops")
        assert inv.status == InvestigationStatus.CANCELLED
        assert inv.cancellation_reason == "Customer exited"
        with pytest.raises(InvalidStateError):
            await workflow.start_review(TENANT, inv.id, reviewer="analyst-1")
        with pytest.raises(InvalidStateError):
            await workflow.escalate(TENANT, inv.id, "late", escalated_by="x")
        with pytest.raises(InvalidStateError):
            await workflow.update_checklist(TENANT, inv.id, "source_of_funds", {"a": 1})

    @pytest.mark.asyncio
    async def test_cannot_request_information_while_awaiting(self, workflow):
        inv = await _open(workflow)
        inv = await workflow.request_information(TENANT, inv.id, ["ID"], requested_by="a")
        with pytest.raises(InvalidStateError):
            await workflow.request_information(TENANT, inv.id, ["More"], requested_by="a")


class TestChecklist:
    @pytest.mark.asyncio
    async def test_field_level_merge(self, workflow, clock):
        inv = await _open(workflow)
        inv = await workflow.update_checklist(
            TENANT, inv.id, ChecklistSection.SOURCE_OF_FUNDS,
            {"verified": False, "notes": "awaiting"}, reviewed_by="analyst-1",
        )
        first_stamp = inv.checklist[ChecklistSection.SOURCE_OF_FUNDS].reviewed_at

        clock.now += timedelta(hours=1)
        inv = await workflow.update_checklist(
            TENANT, inv.id, "source_of_funds", {"verified": True}
        )
        entry = inv.checklist[ChecklistSection.SOURCE_OF_FUNDS]
        assert entry.fields == {"verified": True, "notes": "awaiting"}
        assert entry.reviewed_at == clock.now != first_stamp
        assert entry.reviewed_by == "analyst-1"
        assert inv.status == InvestigationStatus.OPEN

    @pytest.mark.asyncio
    async def test_only_touched_section_is_stamped(self, workflow, clock):
        inv = await _open(workflow)
        inv = await workflow.update_checklist(TENANT, inv.id, "source_of_wealth", {"a": 1})
        wealth_stamp = inv.checklist[ChecklistSection.SOURCE_OF_WEALTH].reviewed_at
        clock.now += timedelta(hours=1)
        inv = await workflow.update_checklist(TENANT, inv.id, "employment_verification", {"b": 2})
        assert inv.checklist[ChecklistSection.SOURCE_OF_WEALTH].reviewed_at == wealth_stamp

    @pytest.mark.asyncio
    async def test_unknown_section(self, workflow):
        inv = await _open(workflow)
        with pytest.raises(ValidationError):
            await workflow.update_checklist(TENANT, inv.id, "horoscope", {"a": 1})


class TestOptimisticConcurrency:
    @pytest.mark.asyncio
    async def test_versions_increment(self, workflow):
        inv = await _open(workflow)
        inv = await workflow.escalate(TENANT, inv.id, "r", escalated_by="a")
        assert inv.version == 2
        inv = await workflow.update_checklist(TENANT, inv.id, "source_of_funds", {"a": 1})
        assert inv.version == 3

    @pytest.mark.asyncio
    async def test_stale_expected_version(self, workflow):
        inv = await _open(workflow)
        await workflow.escalate(TENANT, inv.id, "r", escalated_by="a", expected_version=1)
        with pytest.raises(StaleStateError) as exc_info:
            await workflow.escalate(TENANT, inv.id, "r2", escalated_by="b", expected_version=1)
        assert exc_info.value.actual_version == 2

    @pytest.mark.asyncio
    async def test_concurrent_writers_lose_cleanly(self, investigation_repo, workflow):
        inv = await _open(workflow)
        # Both writers read version 1; the second compare-and-swap must fail
        first = inv.model_copy(update={"assigned_to": "a"})
        second = inv.model_copy(update={"assigned_to": "b"})
        await investigation_repo.update(first, expected_version=1)
        with pytest.raises(StaleStateError):
            await investigation_repo.update(second, expected_version=1)
        stored = await workflow.get(TENANT, inv.id)
        assert stored.assigned_to == "a"
        assert stored.version == 2


def test_next_review_for_blocked_is_none(au_config):
    now = datetime(2025, 3, 3, tzinfo=UTC)
    assert next_review_for(MonitoringLevel.BLOCKED, now, au_config) is None
    assert next_review_for(MonitoringLevel.STANDARD, now, au_config) == now + timedelta(days=365)
