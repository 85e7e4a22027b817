"""
TaskGate: Policy Engine Tests
==============================
Validates:
- Gated categories always require approval
- Financial and legal keyword scanning over the whole task
- Rule precedence (first match wins)
- Default policy and misconfiguration handling
- Hard constraints and the approval request message
"""

from __future__ import annotations

import pytest

from taskgate.core.exceptions import InvalidConfigurationError
from taskgate.core.task_types import Task
from taskgate.safety.policy_engine import (
    ApprovalType,
    PolicyConfig,
    PolicyEngine,
    PolicyEvaluation,
    scan_keywords,
    serialize_task,
)


def _task(**kwargs) -> Task:
    kwargs.setdefault("module", "docs")
    kwargs.setdefault("action", "list")
    return Task(**kwargs)


# ── Category Rules ──────────────────────────────────────────────────────


class TestCategoryRules:
    """Category tables decide before and after keyword scanning."""

    def test_financial_category_always_requires_approval(self, policy_engine):
        """A financial task is gated regardless of its other fields."""
        result = policy_engine.evaluate(_task(
            category="financial", title="Quarterly summary", data={"x": 1},
        ))
        assert result.requires_approval is True
        assert result.approval_type is ApprovalType.CATEGORY_RESTRICTION
        assert '"financial"' in result.reason

    def test_document_management_is_auto_approved(self, policy_engine):
        """An auto-approve category without flagged keywords runs freely."""
        result = policy_engine.evaluate(_task(category="document_management"))
        assert result.requires_approval is False
        assert result.approval_type is ApprovalType.AUTO_APPROVED

    def test_category_wins_over_keywords(self, policy_engine):
        """A gated category is reported as such even if keywords also match."""
        result = policy_engine.evaluate(_task(
            category="legal", data={"note": "payment pending"},
        ))
        assert result.approval_type is ApprovalType.CATEGORY_RESTRICTION

    def test_all_default_gated_categories(self, policy_engine):
        for category in (
            "legal", "financial", "funds_transfer",
            "contract_signing", "compliance_filing",
        ):
            assert policy_engine.evaluate(_task(category=category)).requires_approval


# ── Keyword Scanning ────────────────────────────────────────────────────


class TestKeywordScanning:
    """Keywords are matched anywhere in the serialized task."""

    def test_transfer_action_without_category_is_financial(self, policy_engine):
        """The end-to-end example: pay.transfer is gated as financial."""
        result = policy_engine.evaluate(_task(
            module="pay", action="transfer", data={"amount": 500},
        ))
        assert result.requires_approval is True
        assert result.approval_type is ApprovalType.FINANCIAL_SAFEGUARD
        assert "financial" in result.reason
        assert "transfer" in result.reason

    def test_keyword_in_auto_approved_category_still_gates(self, policy_engine):
        """Keyword rules run before the auto-approve table."""
        result = policy_engine.evaluate(_task(
            category="document_management",
            description="Archive statements from the bank portal",
        ))
        assert result.requires_approval is True
        assert result.approval_type is ApprovalType.FINANCIAL_SAFEGUARD

    def test_legal_keyword_in_metadata(self, policy_engine):
        result = policy_engine.evaluate(_task(
            metadata={"origin": "attorney request"},
        ))
        assert result.approval_type is ApprovalType.LEGAL_SAFEGUARD
        assert "legal" in result.reason

    def test_financial_checked_before_legal(self, policy_engine):
        result = policy_engine.evaluate(_task(
            data={"text": "court fee wire"},
        ))
        assert result.approval_type is ApprovalType.FINANCIAL_SAFEGUARD

    def test_scan_is_case_insensitive(self, policy_engine):
        result = policy_engine.evaluate(_task(data={"method": "WIRE"}))
        assert result.requires_approval is True

    def test_scan_keywords_is_pure(self):
        assert scan_keywords("send the money now", ("wire", "money")) == "money"
        assert scan_keywords("nothing to see", ("wire", "money")) is None

    def test_serialize_task_is_lower_cased(self):
        text = serialize_task(_task(title="Monthly REPORT"))
        assert "monthly report" in text
        assert text == text.lower()


# ── Default Policy ──────────────────────────────────────────────────────


class TestDefaultPolicy:
    """Tasks matching no rule fall back to ``default_auto_approve``."""

    def test_unknown_category_defaults_to_auto(self, policy_engine):
        result = policy_engine.evaluate(_task(category="housekeeping"))
        assert result.requires_approval is False
        assert result.approval_type is ApprovalType.DEFAULT_POLICY

    def test_default_can_require_approval(self):
        engine = PolicyEngine(PolicyConfig(default_auto_approve=False))
        result = engine.evaluate(_task())
        assert result.requires_approval is True
        assert result.approval_type is ApprovalType.DEFAULT_POLICY

    def test_evaluation_is_deterministic(self, policy_engine):
        task = _task(module="pay", action="transfer")
        assert policy_engine.evaluate(task) == policy_engine.evaluate(task)

    def test_from_settings_reads_keyword_lists(self, monkeypatch):
        from taskgate.core.config import get_settings
        monkeypatch.setenv("TASKGATE_FINANCIAL_KEYWORDS", '["crypto"]')
        get_settings.cache_clear()
        engine = PolicyEngine.from_settings()

        assert engine.evaluate(_task(data={"asset": "crypto"})).requires_approval
        assert not engine.evaluate(_task(data={"note": "wire"})).requires_approval


class TestMisconfiguration:
    """Inconsistent rule tables fail at construction."""

    def test_overlapping_categories_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            PolicyEngine(PolicyConfig(
                approval_categories=frozenset({"search"}),
                auto_approve_categories=frozenset({"search"}),
            ))

    def test_empty_keyword_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            PolicyEngine(PolicyConfig(financial_keywords=("money", "  ")))


# ── Constraints & Messages ──────────────────────────────────────────────


class TestConstraints:
    """Hard invariants reported independently of routing."""

    def test_financial_requires_dual_auth(self, policy_engine):
        result = policy_engine.validate_constraints(_task(category="financial"))
        assert result.valid is False
        assert result.violations == ["Financial tasks require dual authorization"]

    def test_financial_with_dual_auth_is_valid(self, policy_engine):
        result = policy_engine.validate_constraints(
            _task(category="financial", metadata={"dual_auth": True})
        )
        assert result.valid is True
        assert result.violations == []

    def test_legal_requires_compliance_review(self, policy_engine):
        result = policy_engine.validate_constraints(_task(category="legal"))
        assert result.violations == ["Legal tasks must be compliance reviewed"]

    def test_other_categories_unconstrained(self, policy_engine):
        assert policy_engine.validate_constraints(_task(category="search")).valid


class TestApprovalRequestMessage:

    def test_message_names_task_and_reason(self):
        task = _task(id="t-1", title="Pay vendor", category="financial", impact=8)
        evaluation = PolicyEvaluation(
            requires_approval=True,
            reason='Category "financial" requires human approval',
            approval_type=ApprovalType.CATEGORY_RESTRICTION,
        )
        message = PolicyEngine.format_approval_request(task, evaluation)

        assert message["subject"] == "Approval Required: Pay vendor"
        assert evaluation.reason in message["body"]
        assert "8/10" in message["body"]
        assert "t-1" in message["body"]
