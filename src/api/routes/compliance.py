"""Compliance engine API endpoints.

Thin adapter: translates camelCase JSON to the engine's models, calls the
engine, and translates results back. No rules live here.
"""

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import APIRouter, Body, Depends, Header, Query, Request
from fastapi.responses import Response

from src.api.casing import from_camel, to_camel_keys
from src.config import settings
from src.db.database import async_session_factory
from src.db.repositories import (
    SqlAlchemyCustomerRepository,
    SqlAlchemyInvestigationRepository,
    SqlAlchemyTransactionRepository,
)
from src.domains.compliance.config import (
    ReconciliationConfig,
    RegionalConfig,
    get_regional_config,
)
from src.domains.compliance.deadlines import deadline_status, report_deadline
from src.domains.compliance.edd import EDDWorkflow
from src.domains.compliance.errors import ConfigurationError, ValidationError
from src.domains.compliance.models import (
    BusinessRiskFactors,
    CandidateTransaction,
    ChecklistSection,
    CustomerRow,
    EvaluationContext,
    IFTIDetails,
    IndividualRiskFactors,
    Party,
    ReportData,
    ReportingEntity,
    ReportingOfficer,
    ReportType,
    ScreeningQuery,
    Transaction,
)
from src.domains.compliance.reconciliation import ImportReconciler
from src.domains.compliance.reports import (
    generate_ifti,
    generate_smr,
    generate_ttr,
    render_csv,
    render_xml,
)
from src.domains.compliance.repository import InvestigationRepository
from src.domains.compliance.risk_scoring import (
    next_review_at,
    score_business,
    score_individual,
    should_block,
)
from src.domains.compliance.screening import ReferenceListProvider, ScreeningMatcher
from src.domains.compliance.thresholds import evaluate

router = APIRouter(prefix="/api/v1/compliance", tags=["compliance"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_config(region: str | None = Query(default=None)) -> RegionalConfig:
    try:
        return get_regional_config(region or settings.default_region)
    except ConfigurationError as exc:
        raise ValidationError("region", str(exc)) from exc


def get_tenant_id(x_tenant_id: str = Header(...)) -> str:
    return x_tenant_id


def get_investigation_repository() -> InvestigationRepository:
    return SqlAlchemyInvestigationRepository(async_session_factory)


def get_reference_provider(request: Request) -> ReferenceListProvider:
    return request.app.state.reference_provider


def get_clock():
    return lambda: datetime.now(UTC)


def get_edd_workflow(
    repository: InvestigationRepository = Depends(get_investigation_repository),  # noqa: B008
    config: RegionalConfig = Depends(get_config),  # noqa: B008
    clock=Depends(get_clock),  # noqa: B008
) -> EDDWorkflow:
    return EDDWorkflow(repository, config, clock=clock)


def _body(payload: dict[str, Any], key: str) -> Any:
    value = payload.get(key)
    if value is None:
        raise ValidationError(key, "is required")
    return value


def _out(model_or_dict: Any) -> Any:
    if hasattr(model_or_dict, "model_dump"):
        model_or_dict = model_or_dict.model_dump(mode="json")
    return to_camel_keys(model_or_dict)


# ---------------------------------------------------------------------------
# Risk scoring
# ---------------------------------------------------------------------------


@router.post("/risk/individual")
async def assess_individual(
    body: dict[str, Any] = Body(...),  # noqa: B008
    config: RegionalConfig = Depends(get_config),  # noqa: B008
    clock=Depends(get_clock),  # noqa: B008
) -> dict:
    factors = IndividualRiskFactors.model_validate(from_camel(body))
    assessment = score_individual(factors, config)
    block = should_block(factors, config)
    return _out({
        **assessment.model_dump(mode="json"),
        "blocked": block.blocked,
        "block_reason": block.reason,
        "next_review_at": next_review_at(assessment.level, clock(), config).isoformat(),
    })


@router.post("/risk/business")
async def assess_business(
    body: dict[str, Any] = Body(...),  # noqa: B008
    config: RegionalConfig = Depends(get_config),  # noqa: B008
    clock=Depends(get_clock),  # noqa: B008
) -> dict:
    factors = BusinessRiskFactors.model_validate(from_camel(body))
    assessment = score_business(factors, config)
    block = should_block(factors, config)
    return _out({
        **assessment.model_dump(mode="json"),
        "blocked": block.blocked,
        "block_reason": block.reason,
        "next_review_at": next_review_at(assessment.level, clock(), config).isoformat(),
    })


# ---------------------------------------------------------------------------
# Screening
# ---------------------------------------------------------------------------


@router.post("/screening")
async def screen(
    body: dict[str, Any] = Body(...),  # noqa: B008
    config: RegionalConfig = Depends(get_config),  # noqa: B008
    provider: ReferenceListProvider = Depends(get_reference_provider),  # noqa: B008
    clock=Depends(get_clock),  # noqa: B008
) -> dict:
    payload = from_camel(body)
    overrides = {
        k: payload.pop(k) for k in ("minimum_match_score", "sources") if k in payload
    }
    if "sources" in overrides:
        overrides["sources"] = tuple(overrides["sources"])
    try:
        screening_config = replace(
            config.screening,
            source_timeout_seconds=settings.screening_source_timeout_seconds,
            **overrides,
        )
    except ConfigurationError as exc:
        raise ValidationError("minimumMatchScore", str(exc)) from exc
    matcher = ScreeningMatcher(provider, screening_config, clock=clock)
    result = await matcher.screen(ScreeningQuery.model_validate(payload))
    return _out(result)


# ---------------------------------------------------------------------------
# Threshold evaluation and deadlines
# ---------------------------------------------------------------------------


@router.post("/thresholds/evaluate")
async def evaluate_transaction(
    body: dict[str, Any] = Body(...),  # noqa: B008
    config: RegionalConfig = Depends(get_config),  # noqa: B008
) -> dict:
    payload = from_camel(body)
    transaction = Transaction.model_validate(_body(payload, "transaction"))
    context = EvaluationContext.model_validate(payload.get("context") or {})
    return _out(evaluate(transaction, config, context))


@router.post("/deadlines")
async def compute_deadline(
    body: dict[str, Any] = Body(...),  # noqa: B008
    config: RegionalConfig = Depends(get_config),  # noqa: B008
    clock=Depends(get_clock),  # noqa: B008
) -> dict:
    payload = from_camel(body)
    try:
        report_type = ReportType(str(_body(payload, "report_type")).lower())
        start = datetime.fromisoformat(str(_body(payload, "start")))
    except ValueError as exc:
        raise ValidationError("body", str(exc)) from exc
    deadline = report_deadline(report_type, start, config, urgent=bool(payload.get("urgent")))
    state = deadline_status(deadline, clock(), config)
    return _out({
        "report_type": report_type.value,
        "deadline": deadline.isoformat(),
        "status": state.status.value,
        "days_remaining": state.days_remaining,
        "message": state.message,
    })


# ---------------------------------------------------------------------------
# EDD investigations
# ---------------------------------------------------------------------------


@router.post("/edd/investigations", status_code=201)
async def create_investigation(
    body: dict[str, Any] = Body(...),  # noqa: B008
    tenant_id: str = Depends(get_tenant_id),
    workflow: EDDWorkflow = Depends(get_edd_workflow),  # noqa: B008
) -> dict:
    payload = from_camel(body)
    investigation = await workflow.create(
        tenant_id,
        customer_id=_body(payload, "customer_id"),
        trigger_reason=_body(payload, "trigger_reason"),
        triggered_by=payload.get("triggered_by"),
        transaction_id=payload.get("transaction_id"),
        assigned_to=payload.get("assigned_to"),
    )
    return _out(investigation)


@router.get("/edd/investigations/{investigation_id}")
async def get_investigation(
    investigation_id: str,
    tenant_id: str = Depends(get_tenant_id),
    workflow: EDDWorkflow = Depends(get_edd_workflow),  # noqa: B008
) -> dict:
    return _out(await workflow.get(tenant_id, investigation_id))


@router.post("/edd/investigations/{investigation_id}/{action}")
async def transition_investigation(
    investigation_id: str,
    action: str,
    body: dict[str, Any] = Body(default_factory=dict),  # noqa: B008
    tenant_id: str = Depends(get_tenant_id),
    workflow: EDDWorkflow = Depends(get_edd_workflow),  # noqa: B008
) -> dict:
    payload = from_camel(body)
    version = payload.get("expected_version")

    match action:
        case "request-information":
            deadline = payload.get("deadline")
            investigation = await workflow.request_information(
                tenant_id, investigation_id,
                items=list(_body(payload, "items")),
                requested_by=_body(payload, "requested_by"),
                deadline=datetime.fromisoformat(deadline) if deadline else None,
                expected_version=version,
            )
        case "start-review":
            investigation = await workflow.start_review(
                tenant_id, investigation_id, reviewer=_body(payload, "reviewer"),
                expected_version=version,
            )
        case "escalate":
            investigation = await workflow.escalate(
                tenant_id, investigation_id,
                reason=_body(payload, "reason"),
                escalated_by=_body(payload, "escalated_by"),
                escalated_to=payload.get("escalated_to") or "management",
                expected_version=version,
            )
        case "complete":
            investigation = await workflow.complete(
                tenant_id, investigation_id,
                findings=_body(payload, "findings"),
                risk_summary=_body(payload, "risk_summary"),
                recommendation=_body(payload, "recommendation"),
                completed_by=payload.get("completed_by"),
                expected_version=version,
            )
        case "cancel":
            investigation = await workflow.cancel(
                tenant_id, investigation_id,
                reason=_body(payload, "reason"),
                cancelled_by=payload.get("cancelled_by"),
                expected_version=version,
            )
        case _:
            raise ValidationError("action", f"unknown investigation action {action!r}")
    return _out(investigation)


@router.patch("/edd/investigations/{investigation_id}/checklist/{section}")
async def update_checklist(
    investigation_id: str,
    section: ChecklistSection,
    body: dict[str, Any] = Body(...),  # noqa: B008
    tenant_id: str = Depends(get_tenant_id),
    workflow: EDDWorkflow = Depends(get_edd_workflow),  # noqa: B008
) -> dict:
    fields = body.get("fields")
    if not isinstance(fields, dict):
        raise ValidationError("fields", "must be an object")
    investigation = await workflow.update_checklist(
        tenant_id, investigation_id, section, fields,
        reviewed_by=body.get("reviewedBy"),
        expected_version=body.get("expectedVersion"),
    )
    return _out(investigation)


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------


def _render(report: ReportData, fmt: str) -> Any:
    match fmt:
        case "xml":
            return Response(content=render_xml(report), media_type="application/xml")
        case "csv":
            return Response(content=render_csv(report), media_type="text/csv")
        case "json":
            return _out(report)
    raise ValidationError("format", "must be one of json, xml, csv")


@router.post("/reports/{report_type}")
async def generate_report(
    report_type: ReportType,
    body: dict[str, Any] = Body(...),  # noqa: B008
    format: str = Query(default="json"),
    config: RegionalConfig = Depends(get_config),  # noqa: B008
    clock=Depends(get_clock),  # noqa: B008
) -> Any:
    payload = from_camel(body)
    party = Party.model_validate(_body(payload, "party"))
    entity = ReportingEntity.model_validate(_body(payload, "reporting_entity"))
    generated_at = clock()

    match report_type:
        case ReportType.TTR:
            report = generate_ttr(
                party, Transaction.model_validate(_body(payload, "transaction")),
                config, entity, generated_at,
            )
        case ReportType.SMR:
            formed_at = payload.get("suspicion_formed_at")
            report = generate_smr(
                party,
                [Transaction.model_validate(t) for t in payload.get("transactions") or []],
                config,
                entity,
                generated_at,
                activity_type=_body(payload, "activity_type"),
                grounds_for_suspicion=_body(payload, "grounds_for_suspicion"),
                reporting_officer=ReportingOfficer.model_validate(
                    _body(payload, "reporting_officer")
                ),
                action_taken=payload.get("action_taken"),
                suspicion_formed_at=datetime.fromisoformat(formed_at) if formed_at else None,
                investigation_id=payload.get("investigation_id"),
            )
        case ReportType.IFTI:
            report = generate_ifti(
                party,
                Transaction.model_validate(_body(payload, "transaction")),
                IFTIDetails.model_validate(_body(payload, "ifti")),
                config,
                entity,
                generated_at,
            )
    return _render(report, format.lower())


# ---------------------------------------------------------------------------
# Import reconciliation
# ---------------------------------------------------------------------------


def get_reconciler() -> ImportReconciler:
    return ImportReconciler(
        SqlAlchemyCustomerRepository(async_session_factory),
        SqlAlchemyTransactionRepository(async_session_factory),
        ReconciliationConfig(
            duplicate_time_tolerance=timedelta(seconds=settings.duplicate_tolerance_seconds),
            max_concurrency=settings.import_max_concurrency,
        ),
    )


@router.post("/imports/customers/reconcile")
async def reconcile_customers(
    body: dict[str, Any] = Body(...),  # noqa: B008
    tenant_id: str = Depends(get_tenant_id),
    reconciler: ImportReconciler = Depends(get_reconciler),  # noqa: B008
) -> dict:
    rows = [CustomerRow.model_validate(r) for r in from_camel(body).get("rows") or []]
    outcomes = await reconciler.reconcile_batch(tenant_id, rows)
    return _out({"results": [o.model_dump(mode="json") for o in outcomes]})


@router.post("/imports/transactions/check-duplicates")
async def check_duplicate_transactions(
    body: dict[str, Any] = Body(...),  # noqa: B008
    tenant_id: str = Depends(get_tenant_id),
    reconciler: ImportReconciler = Depends(get_reconciler),  # noqa: B008
) -> dict:
    items = [
        (_body(item, "customer_id"), CandidateTransaction.model_validate(item))
        for item in from_camel(body).get("transactions") or []
    ]
    outcomes = await reconciler.check_duplicates_batch(tenant_id, items)
    return _out({"results": [o.model_dump(mode="json") for o in outcomes]})
