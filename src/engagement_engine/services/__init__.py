"""Engagement engine services."""

from engagement_engine.services.budget_ledger import BudgetCheck, BudgetLedgerService
from engagement_engine.services.compliance_recorder import ComplianceRecorder
from engagement_engine.services.invoice_generator import DocumentType, InvoiceGenerator
from engagement_engine.services.payment_controller import (
    BookkeepingResult,
    FinalizeResult,
    IntentResult,
    PaymentIntentController,
)
from engagement_engine.services.payment_status import (
    DisplayStatus,
    PaymentDisplay,
    describe_payment,
)
from engagement_engine.services.reconciliation import (
    ReconciliationResult,
    ReconciliationService,
)
from engagement_engine.services.state_machine import (
    InvalidTransitionError,
    WorkItemStateMachine,
    WorkItemStatus,
)
from engagement_engine.services.work_item_service import (
    ApprovalOutcome,
    Decision,
    Deliverable,
    PaymentInitiation,
    WorkItemDetails,
    WorkItemService,
)

__all__ = [
    "ApprovalOutcome",
    "BookkeepingResult",
    "BudgetCheck",
    "BudgetLedgerService",
    "ComplianceRecorder",
    "Decision",
    "Deliverable",
    "DisplayStatus",
    "DocumentType",
    "FinalizeResult",
    "IntentResult",
    "InvalidTransitionError",
    "InvoiceGenerator",
    "PaymentDisplay",
    "PaymentInitiation",
    "PaymentIntentController",
    "ReconciliationResult",
    "ReconciliationService",
    "WorkItemDetails",
    "WorkItemService",
    "WorkItemStateMachine",
    "WorkItemStatus",
    "describe_payment",
]
