from .schemas import (
    AgentIdentity,
    Currency,
    EscalationPayload,
    HandoffRecord,
    IntentType,
    IssueCategory,
    NLUResult,
    OutboundMessage,
    PendingQueueEntry,
    Session,
    Step,
    TurnResult,
)

__all__ = [
    "AgentIdentity",
    "Currency",
    "EscalationPayload",
    "HandoffRecord",
    "IntentType",
    "IssueCategory",
    "NLUResult",
    "OutboundMessage",
    "PendingQueueEntry",
    "Session",
    "Step",
    "TurnResult",
]
