"""
TaskGate: Safety & Approval
============================
Approval gating for proposed tasks.

    Gate 1: Hard constraints (dual authorization, compliance review)
    Gate 2: Policy routing (categories, financial and legal keywords)
    Gate 3: Human approval for gated tasks

Public API:
    PolicyEngine, ApprovalStore
"""

from taskgate.safety.policy_engine import (
    ApprovalType,
    ConstraintResult,
    PolicyConfig,
    PolicyEngine,
    PolicyEvaluation,
)
from taskgate.safety.approval_store import (
    ApprovalRecord,
    ApprovalStatus,
    ApprovalStore,
    DecisionResult,
    SubmitResult,
)

__all__ = [
    "ApprovalType",
    "ConstraintResult",
    "PolicyConfig",
    "PolicyEngine",
    "PolicyEvaluation",
    "ApprovalRecord",
    "ApprovalStatus",
    "ApprovalStore",
    "DecisionResult",
    "SubmitResult",
]
