"""Invoice/receipt generator - two documents per completed payment.

Each completed payment produces:
- business_invoice: addressed to the business, gross amount only
- contractor_receipt: addressed to the contractor, gross, platform fee and net

Both documents print one sequence number, drawn from a per-calendar-month
counter; the receipt appends a fixed suffix. Documents are write-once.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from engagement_engine.config import EngineConfig
from engagement_engine.database import insert_if_absent
from engagement_engine.errors import NotFound, ValidationError
from engagement_engine.models import (
    DocumentNumber,
    DocumentSequence,
    InvoiceDocument,
    Party,
    PaymentRecord,
    WorkItem,
    utcnow,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = "interlinc-invoice-v1"
CENTS = Decimal("0.01")


class DocumentType(str, Enum):
    """Document types generated per payment."""

    BUSINESS_INVOICE = "business_invoice"
    CONTRACTOR_RECEIPT = "contractor_receipt"


def money(value: Decimal) -> Decimal:
    """Round to cents, half-up."""
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def fee_breakdown(gross: Decimal, rate: Decimal) -> tuple[Decimal, Decimal, Decimal]:
    """Split a gross amount into (gross, platform_fee, net)."""
    gross = money(gross)
    fee = money(gross * rate)
    return gross, fee, gross - fee


@dataclass(frozen=True)
class ComplianceProfile:
    """Jurisdiction hints printed on documents, keyed by business country."""

    country_code: str
    region: str  # UK, US, EU, OTHER
    tax_label: str
    business_label: str
    contractor_label: str
    notes: str


DEFAULT_PROFILE = ComplianceProfile(
    country_code="XX",
    region="OTHER",
    tax_label="Tax",
    business_label="Invoice",
    contractor_label="Payment Receipt",
    notes=(
        "This document is generated for bookkeeping purposes. The platform does "
        "not submit documents to tax authorities on your behalf."
    ),
)

PROFILES: dict[str, ComplianceProfile] = {
    "GB": ComplianceProfile(
        country_code="GB",
        region="UK",
        tax_label="VAT",
        business_label="Invoice",
        contractor_label="Payment Receipt",
        notes=(
            "This document is prepared for UK bookkeeping. The platform does not "
            "file VAT returns or submit documents to HMRC."
        ),
    ),
    "US": ComplianceProfile(
        country_code="US",
        region="US",
        tax_label="Sales Tax",
        business_label="Invoice",
        contractor_label="Payment Receipt",
        notes=(
            "Sales tax treatment depends on state and nexus. The platform does not "
            "calculate or remit sales tax."
        ),
    ),
    "DE": ComplianceProfile(
        country_code="DE",
        region="EU",
        tax_label="VAT",
        business_label="Rechnung",
        contractor_label="Zahlungsbeleg",
        notes=(
            "EU VAT rules may apply. This document is for bookkeeping; consult your "
            "tax advisor for classification and filing."
        ),
    ),
}


def compliance_profile(country_code: str | None) -> ComplianceProfile:
    """Profile for a country, falling back to the generic one."""
    if not country_code:
        return DEFAULT_PROFILE
    return PROFILES.get(country_code.upper(), DEFAULT_PROFILE)


# =============================================================================
# Payload structures
# =============================================================================


@dataclass(frozen=True)
class PartyBlock:
    party_id: str
    legal_name: str
    address: str | None
    country: str | None
    tax_id: str | None


@dataclass(frozen=True)
class LineItem:
    description: str
    quantity: int
    unit_price: str
    line_net: str
    tax_rate: str
    tax_amount: str
    line_gross: str


@dataclass(frozen=True)
class PaymentDetails:
    method: str
    transaction_reference: str | None
    paid_at: str
    status: str


@dataclass(frozen=True)
class ComplianceBlock:
    jurisdiction_hint: str | None
    region: str
    tax_label: str
    notes: str
    generated_at: str


@dataclass(frozen=True)
class BusinessInvoicePayload:
    """Business-facing invoice: the gross amount the business paid."""

    invoice_number: str
    document_label: str
    issue_date: str
    currency: str
    supplier: PartyBlock  # the contractor
    customer: PartyBlock  # the business
    line_items: list[LineItem]
    gross: str
    payment: PaymentDetails
    references: dict[str, str | None]
    compliance: ComplianceBlock
    schema_version: str = SCHEMA_VERSION
    document_type: str = DocumentType.BUSINESS_INVOICE.value


@dataclass(frozen=True)
class ContractorReceiptPayload:
    """Contractor-facing receipt: gross, platform fee and net received."""

    invoice_number: str
    document_label: str
    issue_date: str
    currency: str
    payee: PartyBlock  # the contractor
    payer: PartyBlock  # the business
    line_items: list[LineItem]
    gross: str
    platform_fee: str
    net: str
    payment: PaymentDetails
    references: dict[str, str | None]
    compliance: ComplianceBlock
    schema_version: str = SCHEMA_VERSION
    document_type: str = DocumentType.CONTRACTOR_RECEIPT.value


@dataclass
class _Context:
    record: PaymentRecord
    work_item: WorkItem
    business: Party
    contractor: Party
    number: DocumentNumber
    profile: ComplianceProfile
    gross: Decimal
    fee: Decimal
    net: Decimal


class InvoiceGenerator:
    """Generates the business invoice and contractor receipt for a payment.

    generate() is idempotent on (payment_record_id, document_type): a second
    call returns the existing document without drawing a new number.
    """

    def __init__(self, session: AsyncSession, config: EngineConfig | None = None):
        self.session = session
        self.config = config or EngineConfig()

    async def list_for_payment(self, payment_record_id: UUID) -> list[InvoiceDocument]:
        """All documents generated for a payment record."""
        result = await self.session.execute(
            select(InvoiceDocument)
            .where(InvoiceDocument.payment_record_id == payment_record_id)
            .order_by(InvoiceDocument.document_type)
        )
        return list(result.scalars().all())

    async def get_document(
        self, payment_record_id: UUID, document_type: str
    ) -> InvoiceDocument | None:
        result = await self.session.execute(
            select(InvoiceDocument).where(
                InvoiceDocument.payment_record_id == payment_record_id,
                InvoiceDocument.document_type == document_type,
            )
        )
        return result.scalar_one_or_none()

    async def generate(
        self,
        payment_record_id: UUID,
        document_type: DocumentType | str,
    ) -> InvoiceDocument:
        """Generate one document for a completed payment, or return the existing one.

        Raises:
            ValidationError: Unknown document type or payment not completed.
            NotFound: Payment record does not exist.
        """
        try:
            doc_type = DocumentType(document_type)
        except ValueError as e:
            raise ValidationError(
                f"Unknown document type: {document_type}", field="document_type"
            ) from e

        existing = await self.get_document(payment_record_id, doc_type.value)
        if existing is not None:
            return existing

        record = await self.session.get(
            PaymentRecord, payment_record_id, populate_existing=True
        )
        if record is None:
            raise NotFound("PaymentRecord", payment_record_id)
        if not record.is_completed:
            raise ValidationError(
                f"Payment {payment_record_id} is {record.status}; documents require a "
                "completed payment",
                field="payment_record_id",
            )

        ctx = await self._build_context(record)

        if doc_type == DocumentType.BUSINESS_INVOICE:
            values = self._business_invoice(ctx)
        else:
            values = self._contractor_receipt(ctx)

        created = await insert_if_absent(
            self.session,
            InvoiceDocument,
            values,
            index_elements=["payment_record_id", "document_type"],
        )
        document = await self.get_document(payment_record_id, doc_type.value)
        assert document is not None
        if created:
            logger.info(
                "Generated %s %s for payment %s",
                doc_type.value, document.document_number, payment_record_id,
            )
        return document

    async def allocate_number(self, record: PaymentRecord) -> DocumentNumber:
        """Allocate (or return) the payment's document sequence number.

        The period counter row is locked before the allocation is re-checked,
        so concurrent generators for the same payment cannot burn two numbers.
        """
        existing = await self._get_number(record.payment_record_id)
        if existing is not None:
            return existing

        issued = record.completed_at or utcnow()
        period = issued.strftime("%Y-%m")

        await insert_if_absent(
            self.session,
            DocumentSequence,
            {"period": period, "last_value": 0},
            index_elements=["period"],
        )
        await self.session.execute(
            select(DocumentSequence)
            .where(DocumentSequence.period == period)
            .with_for_update()
        )

        existing = await self._get_number(record.payment_record_id)
        if existing is not None:
            return existing

        await self.session.execute(
            update(DocumentSequence)
            .where(DocumentSequence.period == period)
            .values(last_value=DocumentSequence.last_value + 1)
        )
        result = await self.session.execute(
            select(DocumentSequence.last_value).where(DocumentSequence.period == period)
        )
        sequence_number = result.scalar_one()

        invoice_number = (
            f"{self.config.invoice_prefix}-{period}-"
            f"{sequence_number:0{self.config.sequence_padding}d}"
        )
        await insert_if_absent(
            self.session,
            DocumentNumber,
            {
                "payment_record_id": record.payment_record_id,
                "period": period,
                "sequence_number": sequence_number,
                "invoice_number": invoice_number,
            },
            index_elements=["payment_record_id"],
        )
        number = await self._get_number(record.payment_record_id)
        assert number is not None
        return number

    async def _get_number(self, payment_record_id: UUID) -> DocumentNumber | None:
        result = await self.session.execute(
            select(DocumentNumber).where(
                DocumentNumber.payment_record_id == payment_record_id
            )
        )
        return result.scalar_one_or_none()

    async def _build_context(self, record: PaymentRecord) -> _Context:
        work_item = await self.session.get(
            WorkItem, record.work_item_id, populate_existing=True
        )
        business = await self.session.get(Party, record.business_id)
        contractor = await self.session.get(Party, record.contractor_id)
        if work_item is None:
            raise NotFound("WorkItem", record.work_item_id)
        if business is None:
            raise NotFound("Business", record.business_id)
        if contractor is None:
            raise NotFound("Contractor", record.contractor_id)

        number = await self.allocate_number(record)
        gross, fee, net = fee_breakdown(record.amount, self.config.platform_fee_rate)

        return _Context(
            record=record,
            work_item=work_item,
            business=business,
            contractor=contractor,
            number=number,
            profile=compliance_profile(business.country_code),
            gross=gross,
            fee=fee,
            net=net,
        )

    def _common(self, ctx: _Context) -> dict[str, Any]:
        record = ctx.record
        paid_at = (record.completed_at or utcnow()).isoformat()
        description = ctx.work_item.title
        if ctx.work_item.description:
            description = f"{description}: {ctx.work_item.description}"

        return {
            "issue_date": utcnow().date().isoformat(),
            "currency": record.currency,
            "contractor": _party_block(ctx.contractor),
            "business": _party_block(ctx.business),
            "line_items": [
                LineItem(
                    description=description,
                    quantity=1,
                    unit_price=str(ctx.gross),
                    line_net=str(ctx.gross),
                    tax_rate="0",
                    tax_amount="0.00",
                    line_gross=str(ctx.gross),
                )
            ],
            "payment": PaymentDetails(
                method="payment_intent",
                transaction_reference=record.processor_reference or record.gateway_intent_id,
                paid_at=paid_at,
                status="paid",
            ),
            "references": {
                "payment_record_id": str(record.payment_record_id),
                "work_item_id": str(record.work_item_id),
                "work_summary": ctx.work_item.title,
                "deliverable_url": ctx.work_item.deliverable_url,
            },
            "compliance": ComplianceBlock(
                jurisdiction_hint=ctx.business.country_code,
                region=ctx.profile.region,
                tax_label=ctx.profile.tax_label,
                notes=ctx.profile.notes,
                generated_at=utcnow().isoformat(),
            ),
        }

    def _business_invoice(self, ctx: _Context) -> dict[str, Any]:
        common = self._common(ctx)
        payload = BusinessInvoicePayload(
            invoice_number=ctx.number.invoice_number,
            document_label=ctx.profile.business_label,
            issue_date=common["issue_date"],
            currency=common["currency"],
            supplier=common["contractor"],
            customer=common["business"],
            line_items=common["line_items"],
            gross=str(ctx.gross),
            payment=common["payment"],
            references=common["references"],
            compliance=common["compliance"],
        )
        return self._row(ctx, DocumentType.BUSINESS_INVOICE, payload.invoice_number,
                         payload.document_label, asdict(payload), fee=None, net=None)

    def _contractor_receipt(self, ctx: _Context) -> dict[str, Any]:
        common = self._common(ctx)
        number = f"{ctx.number.invoice_number}{self.config.receipt_suffix}"
        payload = ContractorReceiptPayload(
            invoice_number=number,
            document_label=ctx.profile.contractor_label,
            issue_date=common["issue_date"],
            currency=common["currency"],
            payee=common["contractor"],
            payer=common["business"],
            line_items=common["line_items"],
            gross=str(ctx.gross),
            platform_fee=str(ctx.fee),
            net=str(ctx.net),
            payment=common["payment"],
            references=common["references"],
            compliance=common["compliance"],
        )
        return self._row(ctx, DocumentType.CONTRACTOR_RECEIPT, number,
                         payload.document_label, asdict(payload), fee=ctx.fee, net=ctx.net)

    @staticmethod
    def _row(
        ctx: _Context,
        doc_type: DocumentType,
        document_number: str,
        label: str,
        payload: dict[str, Any],
        fee: Decimal | None,
        net: Decimal | None,
    ) -> dict[str, Any]:
        return {
            "payment_record_id": ctx.record.payment_record_id,
            "document_type": doc_type.value,
            "sequence_number": ctx.number.sequence_number,
            "document_number": document_number,
            "period": ctx.number.period,
            "document_label": label,
            "currency": ctx.record.currency,
            "gross_amount": ctx.gross,
            "platform_fee": fee,
            "net_amount": net,
            "business_id": ctx.business.party_id,
            "business_name": ctx.business.display_name,
            "contractor_id": ctx.contractor.party_id,
            "contractor_name": ctx.contractor.display_name,
            "payload": payload,
        }


def _party_block(party: Party) -> PartyBlock:
    return PartyBlock(
        party_id=str(party.party_id),
        legal_name=party.display_name,
        address=party.address,
        country=party.country_code,
        tax_id=party.tax_id,
    )
