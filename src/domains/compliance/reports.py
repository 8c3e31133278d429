"""Regulator report generation (TTR, SMR, IFTI) and serialisation.

Generators are pure: the same inputs, including ``generated_at``, give the
same ReportData, report id included. Serialisers are pure transforms of a
ReportData. XML goes through ElementTree, so free text is always escaped;
amounts are written at the currency's minor-unit precision and never
rounded; an amount with excess precision is rejected.

Regulatory basis:
  AML/CTF Act 2006 s43 (TTR, 10 business days), s41 (SMR, 3 business days
  or 24 hours for terrorism financing), s45 (IFTI, 10 business days)
"""

import csv
import io
import re
import uuid
import xml.etree.ElementTree as ET
from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal

import structlog

from .config import RegionalConfig
from .currency import CurrencyConverter, check_precision, default_converter, format_amount
from .deadlines import calculate_ifti_deadline, calculate_smr_deadline, calculate_ttr_deadline
from .errors import ValidationError
from .models import (
    EntityType,
    IFTIDetails,
    Party,
    ReportData,
    ReportingEntity,
    ReportingOfficer,
    ReportType,
    SMRActivityType,
    Transaction,
)
from .thresholds import generate_ttr_reference, is_cross_border

logger = structlog.get_logger()

REPORT_VERSION = "1.0"

_NAMESPACES = {
    "AU": "http://www.austrac.gov.au/{report_type}/1.0",
}
_DEFAULT_NAMESPACE = "urn:complii:{region}:{report_type}:1.0"

# Characters XML 1.0 cannot carry, even escaped
_XML_INVALID_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ufffe\uffff]")


def _report_id(report_type: ReportType, subject_id: str, generated_at: datetime) -> str:
    seed = f"{report_type.value}:{subject_id}:{generated_at.isoformat()}"
    return str(uuid.uuid5(uuid.NAMESPACE_URL, seed))


def _local_date(moment: datetime, config: RegionalConfig) -> date:
    return (moment.astimezone(config.tz) if moment.tzinfo else moment).date()


def _validate_transactions(transactions: Sequence[Transaction]) -> None:
    for tx in transactions:
        check_precision(tx.amount, tx.currency, field=f"transactions[{tx.id}].amount")


def _total(
    transactions: Sequence[Transaction], config: RegionalConfig, converter: CurrencyConverter
) -> Decimal:
    return sum(
        (converter.convert(tx.amount, tx.currency, config.currency) for tx in transactions),
        Decimal("0"),
    )


# ---------------------------------------------------------------------------
# Generators
# ---------------------------------------------------------------------------


def generate_ttr(
    party: Party,
    transaction: Transaction,
    config: RegionalConfig,
    reporting_entity: ReportingEntity,
    generated_at: datetime,
    converter: CurrencyConverter = default_converter,
) -> ReportData:
    _validate_transactions([transaction])
    normalized = converter.convert(transaction.amount, transaction.currency, config.currency)
    if normalized < config.thresholds.ttr_required:
        raise ValidationError(
            "transaction.amount",
            f"{normalized} {config.currency} is below the TTR threshold "
            f"{config.thresholds.ttr_required}",
        )

    report = ReportData(
        report_id=_report_id(ReportType.TTR, transaction.id, generated_at),
        report_type=ReportType.TTR,
        report_reference=generate_ttr_reference(transaction, config),
        region=config.region,
        regulator=config.regulator,
        generated_at=generated_at,
        submission_deadline=calculate_ttr_deadline(transaction.occurred_at, config),
        reporting_entity=reporting_entity,
        party=party,
        transactions=(transaction,),
        currency=config.currency,
        total_amount=normalized,
    )
    logger.info("report_generated", report_type="ttr", report_reference=report.report_reference,
                submission_deadline=report.submission_deadline.isoformat())
    return report


def generate_smr(
    party: Party,
    transactions: Sequence[Transaction],
    config: RegionalConfig,
    reporting_entity: ReportingEntity,
    generated_at: datetime,
    activity_type: SMRActivityType | str,
    grounds_for_suspicion: str,
    reporting_officer: ReportingOfficer,
    action_taken: str | None = None,
    suspicion_formed_at: datetime | None = None,
    investigation_id: str | None = None,
    converter: CurrencyConverter = default_converter,
) -> ReportData:
    """SMR over zero or more transactions.

    The deadline runs from ``suspicion_formed_at`` (default ``generated_at``);
    terrorism financing uses the urgent clock-hour window.
    """
    try:
        activity_type = SMRActivityType(activity_type)
    except ValueError:
        raise ValidationError(
            "activity_type", f"must be one of {', '.join(a.value for a in SMRActivityType)}"
        ) from None
    if not grounds_for_suspicion or not grounds_for_suspicion.strip():
        raise ValidationError("grounds_for_suspicion", "is required")
    _validate_transactions(transactions)

    formed_at = suspicion_formed_at or generated_at
    urgent = activity_type == SMRActivityType.TERRORISM_FINANCING
    reference = f"SMR-{_local_date(formed_at, config):%Y%m%d}-{party.id[:8]}"

    report = ReportData(
        report_id=_report_id(ReportType.SMR, party.id, generated_at),
        report_type=ReportType.SMR,
        report_reference=reference,
        region=config.region,
        regulator=config.regulator,
        generated_at=generated_at,
        submission_deadline=calculate_smr_deadline(formed_at, config, urgent=urgent),
        reporting_entity=reporting_entity,
        party=party,
        transactions=tuple(sorted(transactions, key=lambda tx: (tx.occurred_at, tx.id))),
        currency=config.currency,
        total_amount=_total(transactions, config, converter),
        activity_type=activity_type,
        grounds_for_suspicion=grounds_for_suspicion.strip(),
        action_taken=action_taken,
        reporting_officer=reporting_officer,
        investigation_id=investigation_id,
    )
    logger.warning("report_generated", report_type="smr", report_reference=reference,
                   activity_type=activity_type.value, urgent=urgent)
    return report


def generate_ifti(
    party: Party,
    transaction: Transaction,
    details: IFTIDetails,
    config: RegionalConfig,
    reporting_entity: ReportingEntity,
    generated_at: datetime,
    converter: CurrencyConverter = default_converter,
) -> ReportData:
    if not is_cross_border(transaction, config):
        raise ValidationError("transaction", "IFTI applies to cross-border transfers only")
    _validate_transactions([transaction])

    reference = f"IFTI-{_local_date(transaction.occurred_at, config):%Y%m%d}-{transaction.id[:8]}"
    report = ReportData(
        report_id=_report_id(ReportType.IFTI, transaction.id, generated_at),
        report_type=ReportType.IFTI,
        report_reference=reference,
        region=config.region,
        regulator=config.regulator,
        generated_at=generated_at,
        submission_deadline=calculate_ifti_deadline(transaction.occurred_at, config),
        reporting_entity=reporting_entity,
        party=party,
        transactions=(transaction,),
        currency=config.currency,
        total_amount=converter.convert(transaction.amount, transaction.currency, config.currency),
        ifti=details,
    )
    logger.info("report_generated", report_type="ifti", report_reference=reference)
    return report


# ---------------------------------------------------------------------------
# XML
# ---------------------------------------------------------------------------


def _xml_safe(value: str) -> str:
    return _XML_INVALID_CHARS.sub("", value)


def _sub(parent: ET.Element, tag: str, text: object | None, **attrs: str) -> ET.Element | None:
    if text is None or text == "":
        return None
    value = text.isoformat() if isinstance(text, date | datetime) else _xml_safe(str(text))
    if not value:
        return None
    el = ET.SubElement(parent, tag, {k: _xml_safe(v) for k, v in attrs.items()})
    el.text = value
    return el


def _address_xml(parent: ET.Element, tag: str, address) -> None:
    if not any((address.street, address.city, address.state, address.postcode, address.country)):
        return
    el = ET.SubElement(parent, tag)
    _sub(el, "Line1", address.street)
    _sub(el, "City", address.city)
    _sub(el, "State", address.state)
    _sub(el, "Postcode", address.postcode)
    _sub(el, "Country", address.country)


def _party_xml(parent: ET.Element, party: Party) -> None:
    el = ET.SubElement(parent, "Party")
    _sub(el, "Type", party.entity_type.value)
    if party.entity_type == EntityType.INDIVIDUAL:
        person = ET.SubElement(el, "Individual")
        _sub(person, "FirstName", party.first_name)
        _sub(person, "MiddleName", party.middle_name)
        _sub(person, "LastName", party.last_name)
        _sub(person, "DateOfBirth", party.date_of_birth)
        _sub(person, "Occupation", party.occupation)
    else:
        entity = ET.SubElement(el, "Entity")
        _sub(entity, "Name", party.business_name)
        _sub(entity, "RegistrationNumber", party.registration_number)
    _address_xml(el, "Address", party.address)
    _sub(el, "Email", party.email)
    _sub(el, "Phone", party.phone)


def _transaction_xml(parent: ET.Element, tx: Transaction) -> None:
    el = ET.SubElement(parent, "Transaction")
    _sub(el, "Reference", tx.external_id or tx.id)
    _sub(el, "Date", tx.occurred_at)
    _sub(el, "Amount", format_amount(tx.amount, tx.currency), currency=tx.currency.upper())
    _sub(el, "Direction", tx.direction.value)
    _sub(el, "Type", tx.transaction_type)
    _sub(el, "Description", tx.description)
    _sub(el, "CounterpartyName", tx.counterparty_name)
    _sub(el, "CounterpartyCountry", tx.counterparty_country)


def _institution_xml(parent: ET.Element, tag: str, institution) -> None:
    el = ET.SubElement(parent, tag)
    _sub(el, "Name", institution.name)
    _sub(el, "BIC", institution.bic)
    _sub(el, "Country", institution.country)


def render_xml(report: ReportData) -> str:
    """Serialise to the regulator XML schema. Byte-identical for equal input."""
    template = _NAMESPACES.get(report.region, _DEFAULT_NAMESPACE)
    namespace = template.format(region=report.region.lower(), report_type=report.report_type.value)
    root = ET.Element(report.report_type.value.upper(), {"xmlns": namespace})

    _sub(root, "ReportReference", report.report_reference)
    _sub(root, "ReportId", report.report_id)
    _sub(root, "ReportType", report.report_type.value.upper())
    _sub(root, "ReportVersion", REPORT_VERSION)
    _sub(root, "GeneratedAt", report.generated_at)
    _sub(root, "Regulator", report.regulator)

    entity = ET.SubElement(root, "ReportingEntity")
    _sub(entity, "Name", report.reporting_entity.name)
    _sub(entity, "Identifier", report.reporting_entity.identifier)
    _sub(entity, "ContactName", report.reporting_entity.contact_name)
    _sub(entity, "ContactEmail", report.reporting_entity.contact_email)

    _party_xml(root, report.party)

    txs = ET.SubElement(root, "Transactions")
    for tx in report.transactions:
        _transaction_xml(txs, tx)
    _sub(root, "TotalAmount", format_amount(report.total_amount, report.currency),
         currency=report.currency)

    if report.report_type == ReportType.SMR:
        matter = ET.SubElement(root, "SuspiciousMatter")
        _sub(matter, "ActivityType", report.activity_type.value if report.activity_type else None)
        _sub(matter, "GroundsForSuspicion", report.grounds_for_suspicion)
        _sub(matter, "ActionTaken", report.action_taken)
        _sub(matter, "InvestigationId", report.investigation_id)
        if report.reporting_officer is not None:
            officer = ET.SubElement(matter, "ReportingOfficer")
            _sub(officer, "Name", report.reporting_officer.name)
            _sub(officer, "Position", report.reporting_officer.position)
            _sub(officer, "ContactNumber", report.reporting_officer.contact_number)

    if report.report_type == ReportType.IFTI and report.ifti is not None:
        transfer = ET.SubElement(root, "Transfer")
        _institution_xml(transfer, "OrderingInstitution", report.ifti.ordering_institution)
        _institution_xml(transfer, "BeneficiaryInstitution", report.ifti.beneficiary_institution)
        beneficiary = ET.SubElement(transfer, "Beneficiary")
        _sub(beneficiary, "Name", report.ifti.beneficiary_name)
        _sub(beneficiary, "Account", report.ifti.beneficiary_account)
        _address_xml(beneficiary, "Address", report.ifti.beneficiary_address)
        _sub(transfer, "RemittanceInformation", report.ifti.remittance_information)

    _sub(root, "SubmissionDeadline", report.submission_deadline)

    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode")
    return f'<?xml version="1.0" encoding="UTF-8"?>\n{body}\n'


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------

_CSV_COMMON = [
    "report_reference",
    "report_type",
    "generated_at",
    "submission_deadline",
    "party_id",
    "party_type",
    "party_name",
    "date_of_birth",
    "transaction_reference",
    "transaction_date",
    "amount",
    "currency",
    "direction",
]
_CSV_SMR = ["activity_type", "grounds_for_suspicion", "action_taken", "reporting_officer"]
_CSV_IFTI = [
    "ordering_institution",
    "ordering_bic",
    "beneficiary_institution",
    "beneficiary_bic",
    "beneficiary_country",
    "beneficiary_name",
    "remittance_information",
]


def _csv_row(report: ReportData, tx: Transaction | None) -> dict[str, str]:
    party = report.party
    row = {
        "report_reference": report.report_reference,
        "report_type": report.report_type.value.upper(),
        "generated_at": report.generated_at.isoformat(),
        "submission_deadline": report.submission_deadline.isoformat(),
        "party_id": party.id,
        "party_type": party.entity_type.value,
        "party_name": party.full_name,
        "date_of_birth": party.date_of_birth.isoformat() if party.date_of_birth else "",
        "transaction_reference": (tx.external_id or tx.id) if tx else "",
        "transaction_date": tx.occurred_at.isoformat() if tx else "",
        "amount": format_amount(tx.amount, tx.currency) if tx else "",
        "currency": tx.currency.upper() if tx else "",
        "direction": tx.direction.value if tx else "",
    }
    if report.report_type == ReportType.SMR:
        officer = report.reporting_officer
        row |= {
            "activity_type": report.activity_type.value if report.activity_type else "",
            "grounds_for_suspicion": report.grounds_for_suspicion or "",
            "action_taken": report.action_taken or "",
            "reporting_officer": f"{officer.name} ({officer.position})" if officer else "",
        }
    if report.report_type == ReportType.IFTI and report.ifti is not None:
        ifti = report.ifti
        row |= {
            "ordering_institution": ifti.ordering_institution.name,
            "ordering_bic": ifti.ordering_institution.bic or "",
            "beneficiary_institution": ifti.beneficiary_institution.name,
            "beneficiary_bic": ifti.beneficiary_institution.bic or "",
            "beneficiary_country": ifti.beneficiary_institution.country,
            "beneficiary_name": ifti.beneficiary_name,
            "remittance_information": ifti.remittance_information or "",
        }
    return row


def render_csv(report: ReportData) -> str:
    """One row per transaction (a single row for a transaction-less SMR)."""
    fieldnames = list(_CSV_COMMON)
    if report.report_type == ReportType.SMR:
        fieldnames += _CSV_SMR
    elif report.report_type == ReportType.IFTI:
        fieldnames += _CSV_IFTI

    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=fieldnames, lineterminator="\n")
    writer.writeheader()
    for tx in report.transactions or (None,):
        writer.writerow(_csv_row(report, tx))
    return output.getvalue()
