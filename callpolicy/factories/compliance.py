"""
Compliance: per-turn call-permission checks and forced branch transitions.
Blocks calls outside the window, over attempt caps, on DNC or without consent.
"""
import logging
import re
from datetime import datetime
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from callpolicy.models import CaseData, ComplianceOutput, PolicyConfig

logger = logging.getLogger(__name__)

# States past the consent step where a declined recording consent blocks the call
CONSENT_GATED_STATES = ("DEBT_CONTEXT", "NEGOTIATION", "PAYMENT_SETUP", "WRAPUP")

# Once in one of these the call is already on a compliance branch or over
BRANCH_STATES = ("DO_NOT_CALL", "WRONG_PARTY_FLOW", "DISPUTE_FLOW", "END_CALL")

AGGRESSIVE_PATTERNS = [
    r'\byou must pay\b',
    r'\byou will be\b',
    r'\bwe will take\b',
    r'\bimmediately\b',
    r'\bright now\b',
]


def _parse_hhmm(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


class ComplianceEngine:
    """Stateless compliance evaluator."""

    def __init__(self, policy: Optional[PolicyConfig] = None):
        """
        Initialize the compliance engine.

        Args:
            policy: Jurisdiction rules (defaults to PolicyConfig())
        """
        self.policy = policy or PolicyConfig()
        self.aggressive_re = [re.compile(p, re.IGNORECASE) for p in AGGRESSIVE_PATTERNS]

    def evaluate(
        self,
        case: CaseData,
        state: str,
        proposed_text: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ComplianceOutput:
        """
        Evaluate every compliance rule for the current turn.

        Args:
            case: Debtor case facts
            state: Current dialogue state
            proposed_text: Outbound text to scan, if any
            now: Evaluation instant (defaults to the current time)

        Returns:
            ComplianceOutput with allow/block, forced transition and risk level
        """
        blocked_reasons: List[str] = []

        ok, reason = self.check_call_window(case, now)
        if not ok:
            blocked_reasons.append(reason)

        ok, reason = self.check_attempt_limits(case)
        if not ok:
            blocked_reasons.append(reason)

        if case.dnc:
            blocked_reasons.append("Debtor is on Do Not Call list")

        ok, reason = self.check_consent(case, state)
        if not ok:
            blocked_reasons.append(reason)

        if proposed_text:
            ok, reason = self.check_prohibited_phrases(proposed_text)
            if not ok:
                blocked_reasons.append(reason)

        forced_transition = self.forced_branch(case, state)

        return ComplianceOutput(
            allowed=not blocked_reasons,
            forced_transition=forced_transition,
            required_templates=self.required_templates(case, state),
            blocked_reasons=blocked_reasons,
            risk_level=self.risk_level(case, state),
        )

    @staticmethod
    def forced_branch(case: CaseData, state: str) -> Optional[str]:
        """Branch state the case flags force, in order DNC, wrong party, dispute."""
        if state in BRANCH_STATES:
            return None
        if case.dnc:
            return "DO_NOT_CALL"
        # Nothing may be discussed with a third party, not even a dispute
        if case.wrong_party:
            return "WRONG_PARTY_FLOW"
        if case.disputed:
            return "DISPUTE_FLOW"
        return None

    def check_call_window(
self, case: CaseData, now: Optional[datetime] = None) -> Tuple[bool, str]:
        """Check the local time of the debtor against the permitted window."""
        try:
            tz = ZoneInfo(case.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r for case %s; skipping call window check", case.timezone, case.id)
            return True, "ok"

        local = now.astimezone(tz) if now else datetime.now(tz)
        current = local.hour * 60 + local.minute
        start = _parse_hhmm(self.policy.call_window_start)
        end = _parse_hhmm(self.policy.call_window_end)

        if current < start or current > end:
            return False, (
                f"Outside call window ({self.policy.call_window_start}-"
                f"{self.policy.call_window_end} {case.timezone})"
            )
        return True, "ok"

    def check_attempt_limits(self, case: CaseData) -> Tuple[bool, str]:
        if case.attempt_count_today >= self.policy.max_attempts_per_day:
            return False, (
                f"Daily attempt limit reached "
                f"({case.attempt_count_today}/{self.policy.max_attempts_per_day})"
            )
        if case.attempt_count_total >= self.policy.max_attempts_total:
            return False, (
                f"Total attempt limit reached "
                f"({case.attempt_count_total}/{self.policy.max_attempts_total})"
            )
        return True, "ok"

    def check_consent(self, case: CaseData, state: str) -> Tuple[bool, str]:
        if (
            self.policy.require_recording_consent
            and state in CONSENT_GATED_STATES
            and case.recording_consent is False
        ):
            return False, "Recording consent required but declined"
        return True, "ok"

    def check_prohibited_phrases(self, text: str) -> Tuple[bool, str]:
        lowered = text.lower()
        found = [p for p in self.policy.prohibited_phrases if p.lower() in lowered]
        if found:
            return False, f"Response contains prohibited phrases: {', '.join(found)}"
        return True, "ok"

    def required_templates(self, case: CaseData, state: str) -> List[str]:
        templates = []
        if state == "DISCLOSURE":
            templates.append("MINI_MIRANDA")
        if state == "CONSENT_RECORDING" and self.policy.require_recording_consent:
            templates.append("RECORDING_CONSENT")
        if state == "DO_NOT_CALL":
            templates.append("DNC_ACKNOWLEDGMENT")
        if state == "DISPUTE_FLOW":
            templates.append("DISPUTE_ACKNOWLEDGMENT")
        return templates

    @staticmethod
    def risk_level(case: CaseData, state: str) -> str:
        if case.disputed or case.dnc or case.wrong_party:
            return "HIGH"
        if (
            case.attempt_count_total > 10
            or case.days_past_due > 120
            or state in ("DISPUTE_FLOW", "ESCALATE_HUMAN", "DO_NOT_CALL")
        ):
            return "MEDIUM"
        return "LOW"

    def validate_response(self, text: str) -> Tuple[bool, List[str]]:
        """
        Validate an outbound utterance before it is spoken.

        Args:
            text: Agent utterance

        Returns:
            Tuple of (is_valid, list of issues)
        """
        issues = []
        ok, reason = self.check_prohibited_phrases(text)
        if not ok:
            issues.append(reason)

        for pattern in self.aggressive_re:
            match = pattern.search(text)
            if match:
                issues.append(f"Potentially aggressive language: '{match.group(0)}'")

        return len(issues) == 0, issues


__all__ = ["ComplianceEngine", "BRANCH_STATES", "CONSENT_GATED_STATES"]
