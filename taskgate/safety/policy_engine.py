"""
TaskGate: Policy Engine
========================
Decides whether a task may run autonomously or must wait for a human.

Evaluation order (first match wins):
1. Category in the approval-required set      → category_restriction
2. Financial keyword anywhere in the task     → financial_safeguard
3. Legal keyword anywhere in the task         → legal_safeguard
4. Category in the auto-approve set           → auto_approved
5. ``default_auto_approve``                   → default_policy

Keyword scanning runs over a lower-cased JSON serialization of the whole
task, so a match in any field (payload, title, metadata) gates the task.

Usage:
    engine = PolicyEngine.from_settings()
    evaluation = engine.evaluate(task)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Iterable

from taskgate.core.config import Settings, get_settings
from taskgate.core.exceptions import InvalidConfigurationError
from taskgate.core.task_types import (
    DEFAULT_APPROVAL_CATEGORIES,
    DEFAULT_AUTO_APPROVE_CATEGORIES,
    DEFAULT_FINANCIAL_KEYWORDS,
    DEFAULT_LEGAL_KEYWORDS,
    Task,
    TaskCategory,
)


class ApprovalType(StrEnum):
    """Which rule produced a policy decision."""

    CATEGORY_RESTRICTION = "category_restriction"
    FINANCIAL_SAFEGUARD = "financial_safeguard"
    LEGAL_SAFEGUARD = "legal_safeguard"
    AUTO_APPROVED = "auto_approved"
    DEFAULT_POLICY = "default_policy"
    HUMAN_DECISION = "human_decision"


@dataclass(frozen=True)
class PolicyEvaluation:
    """Outcome of ``PolicyEngine.evaluate``. Not persisted."""

    requires_approval: bool
    reason: str
    approval_type: ApprovalType

    def to_dict(self) -> dict[str, Any]:
        return {
            "requires_approval": self.requires_approval,
            "reason": self.reason,
            "approval_type": self.approval_type.value,
        }


@dataclass(frozen=True)
class ConstraintResult:
    """Outcome of ``PolicyEngine.validate_constraints``."""

    valid: bool
    violations: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PolicyConfig:
    """Rule tables for the policy engine."""

    approval_categories: frozenset[str] = frozenset(DEFAULT_APPROVAL_CATEGORIES)
    auto_approve_categories: frozenset[str] = frozenset(DEFAULT_AUTO_APPROVE_CATEGORIES)
    financial_keywords: tuple[str, ...] = DEFAULT_FINANCIAL_KEYWORDS
    legal_keywords: tuple[str, ...] = DEFAULT_LEGAL_KEYWORDS
    default_auto_approve: bool = True


# ── Pure helpers ────────────────────────────────────────────────────────


def serialize_task(task: Task) -> str:
    """Normalized, case-folded text form of a task used for keyword scans."""
    return json.dumps(task.to_dict(), sort_keys=True, default=str).lower()


def scan_keywords(text: str, keywords: Iterable[str]) -> str | None:
    """
    Return the first keyword found as a substring of ``text``.

    ``text`` is expected to be lower-cased already. Returns ``None`` when
    nothing matches.
    """
    for keyword in keywords:
        if keyword in text:
            return keyword
    return None


def _normalize_keywords(keywords: Iterable[str], label: str) -> tuple[str, ...]:
    normalized = []
    for keyword in keywords:
        word = keyword.strip().lower()
        if not word:
            raise InvalidConfigurationError(f"Empty {label} keyword in policy configuration.")
        normalized.append(word)
    return tuple(normalized)


# ── Policy Engine ───────────────────────────────────────────────────────


class PolicyEngine:
    """
    Pure approval-routing decision function.

    No I/O and no side effects; identical configuration and task always
    produce the identical evaluation.
    """

    def __init__(self, config: PolicyConfig | None = None) -> None:
        config = config or PolicyConfig()
        overlap = config.approval_categories & config.auto_approve_categories
        if overlap:
            raise InvalidConfigurationError(
                f"Categories configured as both gated and auto-approved: {sorted(overlap)}"
            )
        self._approval_categories = frozenset(config.approval_categories)
        self._auto_approve_categories = frozenset(config.auto_approve_categories)
        self._financial_keywords = _normalize_keywords(config.financial_keywords, "financial")
        self._legal_keywords = _normalize_keywords(config.legal_keywords, "legal")
        self._default_auto_approve = config.default_auto_approve

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> PolicyEngine:
        settings = settings or get_settings()
        return cls(PolicyConfig(
            approval_categories=frozenset(settings.approval_categories),
            auto_approve_categories=frozenset(settings.auto_approve_categories),
            financial_keywords=tuple(settings.financial_keywords),
            legal_keywords=tuple(settings.legal_keywords),
            default_auto_approve=settings.default_auto_approve,
        ))

    def evaluate(self, task: Task) -> PolicyEvaluation:
        """Decide whether ``task`` requires human approval."""
        category = task.category

        if category in self._approval_categories:
            return PolicyEvaluation(
                requires_approval=True,
                reason=f'Category "{category}" requires human approval',
                approval_type=ApprovalType.CATEGORY_RESTRICTION,
            )

        text = serialize_task(task)

        keyword = scan_keywords(text, self._financial_keywords)
        if keyword is not None:
            return PolicyEvaluation(
                requires_approval=True,
                reason=f'Task contains financial keyword: "{keyword}"',
                approval_type=ApprovalType.FINANCIAL_SAFEGUARD,
            )

        keyword = scan_keywords(text, self._legal_keywords)
        if keyword is not None:
            return PolicyEvaluation(
                requires_approval=True,
                reason=f'Task contains legal keyword: "{keyword}"',
                approval_type=ApprovalType.LEGAL_SAFEGUARD,
            )

        if category in self._auto_approve_categories:
            return PolicyEvaluation(
                requires_approval=False,
                reason=f'Category "{category}" is auto-approved',
                approval_type=ApprovalType.AUTO_APPROVED,
            )

        return PolicyEvaluation(
            requires_approval=not self._default_auto_approve,
            reason=(
                "Default auto-approve policy applied"
                if self._default_auto_approve
                else "Default requires approval policy applied"
            ),
            approval_type=ApprovalType.DEFAULT_POLICY,
        )

    def validate_constraints(self, task: Task) -> ConstraintResult:
        """
        Check hard invariants that hold regardless of approval routing.

        Violations are reported, never used to change routing.
        """
        violations: list[str] = []
        metadata = task.metadata or {}

        if task.category == TaskCategory.FINANCIAL and not metadata.get("dual_auth"):
            violations.append("Financial tasks require dual authorization")

        if task.category == TaskCategory.LEGAL and not metadata.get("compliance_reviewed"):
            violations.append("Legal tasks must be compliance reviewed")

        return ConstraintResult(valid=not violations, violations=violations)

    @staticmethod
    def format_approval_request(
        task: Task, evaluation: PolicyEvaluation
    ) -> dict[str, str]:
        """Render the human-facing approval request."""
        name = task.title or f"{task.module}.{task.action}"
        body = "\n".join([
            f"**What:** {task.description or name}",
            "",
            f"**Why flagged:** {evaluation.reason}",
            "",
            f"**Category:** {task.category or 'uncategorized'}",
            "",
            f"**Impact:** {task.impact}/10",
            "",
            "---",
            "**Is it OK to implement this?**",
            "",
            f"Respond with approve/reject for task {task.id}.",
        ])
        return {"subject": f"Approval Required: {name}", "body": body}
