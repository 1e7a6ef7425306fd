"""Benefit Kernel data models."""

from benefit_kernel.models.config import EligibilityConfig, WorkflowConfig
from benefit_kernel.models.eligibility import (
    MISSING_DATA,
    NOT_SATISFIED,
    AlternativeSuggestion,
    CriteriaEvaluation,
    EligibilityResult,
    FailingCriterion,
)
from benefit_kernel.models.profile import (
    HeldDocument,
    Location,
    Profile,
    VerificationStatus,
)
from benefit_kernel.models.requirements import (
    RequirementEdge,
    RequirementGraph,
    RequirementNode,
    ReuseAction,
    ReuseDecision,
)
from benefit_kernel.models.scheme import (
    Criterion,
    DocumentType,
    Operator,
    RequiredDocument,
    Scheme,
)
from benefit_kernel.models.submission import (
    SubmissionOutcome,
    SubmissionRequest,
    SubmissionStatus,
)
from benefit_kernel.models.values import (
    DateValue,
    NumberValue,
    StringSetValue,
    StringValue,
    TypedValue,
)
from benefit_kernel.models.workflow import (
    AdvanceResult,
    AuthorityContact,
    StaleEscalation,
    StatusReport,
    StepAction,
    StepInput,
    StepState,
    Workflow,
    WorkflowStatus,
    WorkflowStep,
)

__all__ = [
    "MISSING_DATA",
    "NOT_SATISFIED",
    "AdvanceResult",
    "AlternativeSuggestion",
    "AuthorityContact",
    "CriteriaEvaluation",
    "Criterion",
    "DateValue",
    "DocumentType",
    "EligibilityConfig",
    "EligibilityResult",
    "FailingCriterion",
    "HeldDocument",
    "Location",
    "NumberValue",
    "Operator",
    "Profile",
    "RequiredDocument",
    "RequirementEdge",
    "RequirementGraph",
    "RequirementNode",
    "ReuseAction",
    "ReuseDecision",
    "Scheme",
    "StaleEscalation",
    "StatusReport",
    "StepAction",
    "StepInput",
    "StepState",
    "StringSetValue",
    "SubmissionOutcome",
    "SubmissionRequest",
    "SubmissionStatus",
    "StringValue",
    "TypedValue",
    "VerificationStatus",
    "Workflow",
    "WorkflowConfig",
    "WorkflowStatus",
    "WorkflowStep",
]
