"""
Utterance generators: turn a chosen action into agent speech.
Template-based generation is deterministic per seed; the LLM generator
falls back to templates when the model call fails.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

import numpy as np

from callpolicy.factories.llm_client import LLMClient
from callpolicy.models import CaseData, SlotValue

logger = logging.getLogger(__name__)

TEMPLATES: Dict[str, List[str]] = {
    "OPENING:PROCEED": [
        "Hello, may I speak with {debtor_name}?",
        "Hi, is this {debtor_name}?",
    ],
    "OPENING:ASK_CLARIFY": [
        "Sorry, I didn't catch that. Is this the right number for {debtor_name}?",
        "Could you please confirm your name?",
    ],
    "OPENING:HANDLE_PUSHBACK": [
        "I know you're busy. This will only take a moment.",
        "I appreciate your time. This is an important matter.",
    ],
    "DISCLOSURE:IDENTIFY_SELF": [
        "This is Alex calling from {creditor_name} about your account.",
        "I'm calling from {creditor_name} regarding your account.",
    ],
    "DISCLOSURE:ASK_CLARIFY": [
        "Sorry, could you repeat that?",
    ],
    "DISCLOSURE:PROCEED": [
        "This is an attempt to collect a debt. Any information obtained will be used for that purpose.",
    ],
    "IDENTITY_VERIFICATION:ASK_VERIFICATION": [
        "For security, can you confirm the last four digits of your Social Security number?",
        "To verify your identity, what is your date of birth?",
    ],
    "IDENTITY_VERIFICATION:CONFIRM_IDENTITY": [
        "Thank you for confirming. I've verified your identity.",
        "Perfect, that matches our records.",
    ],
    "IDENTITY_VERIFICATION:ASK_CLARIFY": [
        "Sorry, could you repeat that?",
    ],
    "CONSENT_RECORDING:PROCEED": [
        "This call may be recorded for quality purposes. Do you consent to being recorded?",
    ],
    "CONSENT_RECORDING:ASK_CLARIFY": [
        "Sorry, was that a yes to the recording?",
    ],
    "CONSENT_RECORDING:HANDLE_PUSHBACK": [
        "I know you're busy. This will only take a moment.",
    ],
    "DEBT_CONTEXT:PROCEED": [
        "I'm calling about your outstanding balance of ${amount_due} with {creditor_name}.",
    ],
    "DEBT_CONTEXT:EMPATHIZE": [
        "I understand this may be unexpected. Let me explain the details.",
    ],
    "DEBT_CONTEXT:ASK_CLARIFY": [
        "Do you have any questions about the account?",
    ],
    "NEGOTIATION:EMPATHIZE": [
        "I understand that money can be tight. Let's see what options we can work out.",
        "I hear you. Many people are in similar situations. Let's find a solution together.",
    ],
    "NEGOTIATION:OFFER_PLAN": [
        "We can set up a payment plan of ${monthly_3} per month. Would that work for you?",
        "How about we split this into monthly payments of ${monthly_6}?",
    ],
    "NEGOTIATION:COUNTER_OFFER": [
        "What amount would work better for you each month?",
        "Let me adjust that. What can you comfortably afford?",
    ],
    "NEGOTIATION:REQUEST_CALLBACK": [
        "Would it be better if I call back at another time?",
        "No problem. Should I call back tomorrow or later this week?",
    ],
    "NEGOTIATION:HANDLE_PUSHBACK": [
        "Those are fair concerns. Let me address them.",
    ],
    "NEGOTIATION:PROCEED": [
        "Great, let's move forward with setting this up.",
    ],
    "PAYMENT_SETUP:CONFIRM_PLAN": [
        "So we're agreeing to the plan we discussed. Is that correct?",
    ],
    "PAYMENT_SETUP:SEND_PAYMENT_LINK": [
        "I'll send you a link to complete the payment. You should receive it shortly.",
    ],
    "PAYMENT_SETUP:ASK_CLARIFY": [
        "Which payment method works best for you?",
    ],
    "PAYMENT_SETUP:PROCEED": [
        "Everything is set up. Your first payment will be due on the date we discussed.",
    ],
    "WRAPUP:SUMMARIZE": [
        "To summarize, we've agreed on next steps. You'll receive confirmation shortly.",
    ],
    "WRAPUP:PROCEED": [
        "Thank you for your time today. Have a great day.",
    ],
    "CALLBACK_SCHEDULED:SUMMARIZE": [
        "I've scheduled a callback at a time that suits you.",
    ],
    "CALLBACK_SCHEDULED:PROCEED": [
        "We'll talk then. Have a great day.",
    ],
    "DISPUTE_FLOW:ACKNOWLEDGE_DISPUTE": [
        "I've noted that you're disputing this debt. We'll mail you validation documents.",
    ],
    "DISPUTE_FLOW:EMPATHIZE": [
        "I understand your concern. Let's sort this out.",
    ],
    "DISPUTE_FLOW:PROCEED": [
        "We'll send you the documentation. Thank you for your time.",
    ],
    "WRONG_PARTY_FLOW:APOLOGIZE": [
        "I apologize for the confusion. We'll update our records.",
    ],
    "WRONG_PARTY_FLOW:PROCEED": [
        "Sorry for the inconvenience. Have a good day.",
    ],
    "DO_NOT_CALL:ACKNOWLEDGE_DNC": [
        "I've noted your request. You won't receive any more calls from us.",
    ],
    "DO_NOT_CALL:PROCEED": [
        "Your number has been added to our do-not-call list.",
    ],
    "ESCALATE_HUMAN:ESCALATE": [
        "I'll transfer you to a supervisor who can better assist you.",
    ],
    "ESCALATE_HUMAN:PROCEED": [
        "Please hold while I connect you.",
    ],
    "END_CALL:SUMMARIZE": [
        "Thank you for your time. Goodbye.",
    ],
}

AGENT_SYSTEM_PROMPT = """You are a debt collection agent speaking to a debtor on the phone.
Be professional, empathetic and compliant. Never threaten, never mention arrest, lawsuits or wage garnishment.
Keep responses brief (1-2 sentences).
Current state: {state}
Intent to express: {action}
Debtor name: {debtor_name}
Creditor: {creditor_name}
Amount: ${amount_due:.2f}"""


@dataclass
class AgentContext:
    """What an utterance generator may see about the call."""

    case: CaseData
    conversation_history: List[Dict[str, str]] = field(default_factory=list)
    slots: Dict[str, SlotValue] = field(default_factory=dict)


class UtteranceGenerator(Protocol):
    def generate(self, action: str, state: str, context: AgentContext) -> str:
        ...


class TemplateUtteranceGenerator:
    """Fills per STATE:ACTION templates with case facts."""

    def __init__(self, seed: Optional[int] = None):
        self.rng = np.random.default_rng(seed)

    def generate(self, action: str, state: str, context: AgentContext) -> str:
        options = TEMPLATES.get(f"{state}:{action}")
        if not options:
            return f"[{action} in {state}]"
        template = options[int(self.rng.integers(len(options)))]
        return self._fill(template, context.case)

    @staticmethod
    def _fill(template: str, case: CaseData) -> str:
        return template.format(
            debtor_name=case.debtor_name,
            creditor_name=case.creditor_name,
            amount_due=f"{case.amount_due:.2f}",
            monthly_3=f"{case.amount_due / 3:.2f}",
            monthly_6=f"{case.amount_due / 6:.2f}",
        )


class LLMUtteranceGenerator:
    """
    Prompts a language model for the agent line.

    Args:
        client: Text completion client
        fallback: Generator used when the client fails
    """

    def __init__(self, client: LLMClient, fallback: Optional[TemplateUtteranceGenerator] = None):
        self.client = client
        self.fallback = fallback or TemplateUtteranceGenerator()

    def generate(self, action: str, state: str, context: AgentContext) -> str:
        case = context.case
        system_prompt = AGENT_SYSTEM_PROMPT.format(
            state=state,
            action=action,
            debtor_name=case.debtor_name,
            creditor_name=case.creditor_name,
            amount_due=case.amount_due,
        )

        prompt = "Generate the agent's next response.\n\n"
        recent = context.conversation_history[-4:]
        if recent:
            prompt += "Recent conversation:\n"
            for turn in recent:
                speaker = "Agent" if turn["role"] == "agent" else "Borrower"
                prompt += f"{speaker}: {turn['text']}\n"
        prompt += f"\nIntent: {action}\nAgent says:"

        try:
            text = self.client.complete(prompt, system_prompt)
        except Exception as exc:  # any client failure falls back to templates
            logger.warning("Utterance generation failed for %s:%s, using template (%s)", state, action, exc)
            return self.fallback.generate(action, state, context)

        if not text:
            return self.fallback.generate(action, state, context)
        return text


__all__ = [
    "TEMPLATES",
    "AgentContext",
    "UtteranceGenerator",
    "TemplateUtteranceGenerator",
    "LLMUtteranceGenerator",
]
