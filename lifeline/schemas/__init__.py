from .auth import Token, UserCreate, UserLogin, UserResponse, UserUpdate
from .interview import InterviewRequest, InterviewTurn
from .investigation import (
    ChatMessage,
    CompleteRequest,
    Condition,
    DoctorPlan,
    FollowUpAnalysis,
    InvestigationRecord,
    InvestigationStatus,
    InvestigationStep,
    InvestigationSummary,
    LabResult,
    LabResultsRequest,
    Medication,
    PlanRequest,
    RejectRequest,
    StepInput,
    StepType,
    SubmitInvestigationRequest,
    SubmitResponse,
    SuggestedNextSteps,
    TreatmentPlan,
    TriageAnalysis,
    VersionRequest,
)
from .message import MessageCreate, MessageResponse

__all__ = [
    "ChatMessage",
    "CompleteRequest",
    "Condition",
    "DoctorPlan",
    "FollowUpAnalysis",
    "InterviewRequest",
    "InterviewTurn",
    "InvestigationRecord",
    "InvestigationStatus",
    "InvestigationStep",
    "InvestigationSummary",
    "LabResult",
    "LabResultsRequest",
    "Medication",
    "MessageCreate",
    "MessageResponse",
    "PlanRequest",
    "RejectRequest",
    "StepInput",
    "StepType",
    "SubmitInvestigationRequest",
    "SubmitResponse",
    "SuggestedNextSteps",
    "Token",
    "TreatmentPlan",
    "TriageAnalysis",
    "UserCreate",
    "UserLogin",
    "UserResponse",
    "UserUpdate",
    "VersionRequest",
]
