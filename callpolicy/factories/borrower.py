"""
Borrower simulators: the counterparty side of a simulated collection call.

Two implementations share one contract (`reset(persona)` and
`respond(agent_utterance) -> BorrowerResponse`):
  * BorrowerSimulator: persona-prompted language model.
  * ScriptedBorrower: seeded rule model for offline training and tests.
"""
from __future__ import annotations

import logging
import re
from typing import Dict, List, Optional, Protocol, Tuple

import numpy as np

from callpolicy.factories.llm_client import LLMClient
from callpolicy.factories.persona_forge import describe_persona, sample_persona
from callpolicy.models import BorrowerResponse, Persona

logger = logging.getLogger(__name__)

FALLBACK_REPLY = "I'm sorry, what did you say?"
HISTORY_WINDOW = 6

# Checked in order; the first matching group wins.
SIGNAL_CUES: List[Tuple[str, Tuple[str, ...]]] = [
    ("STOP_CONTACT", ("stop calling", "don't call", "do not call", "leave me alone", "harassment")),
    ("DISPUTE", ("don't owe", "not my debt", "dispute", "prove it", "never heard of")),
    ("WRONG_PARTY", ("wrong number", "wrong person", "not me", "don't know who")),
    ("ATTORNEY_REPRESENTED", ("my lawyer", "my attorney", "contact my attorney")),
    ("INCONVENIENT_TIME", ("bad time", "busy right now", "at work right now")),
    ("CALLBACK_REQUEST", ("call back", "call me later", "call me another time")),
    ("AGREEMENT", (
        "i can pay", "i'll pay", "i will pay", "sounds good", "that works",
        "okay, i agree", "yes, i agree", "let's do it", "sign me up",
    )),
    ("REFUSAL", ("i can't pay", "i won't pay", "no way", "not paying", "forget it", "absolutely not")),
    ("CONFUSION", ("what do you mean", "i don't understand", "confused", "what is this about", "huh?")),
    ("HOSTILITY", ("scam", "fraud", "go to hell", "sue you", "threatening me")),
]

HANGUP_CUES = ("hanging up", "i'm done", "goodbye", "*click*", "end this call")
NEGATIVE_SIGNALS = ("HOSTILITY", "REFUSAL", "STOP_CONTACT")


def detect_signal(text: str) -> Optional[str]:
    """Classify a counterparty reply into at most one signal."""
    lowered = text.lower()
    for signal, cues in SIGNAL_CUES:
        if any(cue in lowered for cue in cues):
            return signal
    return None


def detect_hangup(text: str, patience_remaining: float) -> bool:
    if patience_remaining <= 0:
        return True
    lowered = text.lower()
    return any(cue in lowered for cue in HANGUP_CUES)


def _normalize_words(text: str) -> List[str]:
    return re.sub(r"[^a-z0-9\s]", "", text.lower()).split()


def is_similar(a: str, b: str, threshold: float = 0.5) -> bool:
    """Jaccard word overlap above `threshold` counts as a repeated line."""
    a_words = set(_normalize_words(a))
    b_words = set(_normalize_words(b))
    union = a_words | b_words
    if not union:
        return False
    return len(a_words & b_words) / len(union) > threshold


def build_system_prompt(persona: Persona) -> str:
    return f"""You are role-playing as a person receiving a debt collection call. Stay in character throughout.

PERSONA:
{describe_persona(persona)}

BEHAVIOR RULES:
1. Respond naturally as this persona would, using casual language.
2. Keep responses brief (1-3 sentences).
3. If you are hostile, you may be dismissive but avoid profanity.
4. If asked the same question multiple times, express frustration.
5. If an offer matches your financial situation and willingness, consider accepting.
6. If your patience runs out, say you are ending the call.
7. Never break character or acknowledge you are an AI.

Respond ONLY with what the borrower would say. No narration."""


def build_user_prompt(
    agent_utterance: str,
    history: List[Dict[str, str]],
    patience_remaining: float,
    frustration_events: int,
) -> str:
    prompt = ""
    recent = history[-HISTORY_WINDOW:]
    if recent:
        prompt += "RECENT CONVERSATION:\n"
        for turn in recent:
            speaker = "Agent" if turn["role"] == "agent" else "You"
            prompt += f"{speaker}: {turn['text']}\n"
        prompt += "\n"

    prompt += f'AGENT SAYS: "{agent_utterance}"\n\n'
    prompt += "YOUR STATE:\n"
    prompt += f"- Patience remaining: {patience_remaining:g}/10\n"
    prompt += f"- Frustration events so far: {frustration_events}\n"
    if patience_remaining <= 2:
        prompt += "- You are very frustrated and considering hanging up.\n"
    elif patience_remaining <= 4:
        prompt += "- You are getting impatient.\n"
    prompt += "\nRespond as the borrower would:"
    return prompt


class CounterpartySimulator(Protocol):
    def reset(self, persona: Optional[Persona] = None) -> None:
        ...

    def respond(self, agent_utterance: str) -> BorrowerResponse:
        ...


class _PatienceTracker:
    """Shared persona, patience and history bookkeeping."""

    def __init__(self, persona: Optional[Persona], seed: Optional[int]):
        self.rng = np.random.default_rng(seed)
        self.persona = persona or sample_persona(self.rng)
        self.patience_remaining = float(self.persona.patience)
        self.history: List[Dict[str, str]] = []
        self.frustration_events = 0
        self.last_agent_utterance: Optional[str] = None

    def _start_episode(self, persona: Optional[Persona]) -> None:
        if persona is not None:
            self.persona = persona
        self.patience_remaining = float(self.persona.patience)
        self.history = []
        self.frustration_events = 0
        self.last_agent_utterance = None

    def _note_repetition(self, agent_utterance: str) -> bool:
        if self.last_agent_utterance and is_similar(agent_utterance, self.last_agent_utterance):
            self.frustration_events += 1
            self.patience_remaining = max(0.0, self.patience_remaining - 1)
            return True
        return False

    def _finish_turn(self, agent_utterance: str, reply: str) -> BorrowerResponse:
        self.history.append({"role": "agent", "text": agent_utterance})
        self.history.append({"role": "borrower", "text": reply})
        self.last_agent_utterance = agent_utterance

        signal = detect_signal(reply)
        if signal in NEGATIVE_SIGNALS:
            self.patience_remaining = max(0.0, self.patience_remaining - 1)
        if self.rng.random() < 0.1:
            self.patience_remaining = max(0.0, self.patience_remaining - 0.5)

        return BorrowerResponse(
            text=reply,
            should_hangup=detect_hangup(reply, self.patience_remaining),
            detected_signal=signal,
            patience_remaining=self.patience_remaining,
        )

    def get_history(self) -> List[Dict[str, str]]:
        return list(self.history)


class BorrowerSimulator(_PatienceTracker):
    """
    Language-model borrower.

    Args:
        client: Text completion client
        persona: Initial persona (sampled when omitted)
        seed: Seed for persona sampling and patience drift
    """

    def __init__(self, client: LLMClient, persona: Optional[Persona] = None, seed: Optional[int] = None):
        super().__init__(persona, seed)
        self.client = client
        self.system_prompt = build_system_prompt(self.persona)

    def reset(self, persona: Optional[Persona] = None) -> None:
        self._start_episode(persona)
        self.system_prompt = build_system_prompt(self.persona)

    def respond(self, agent_utterance: str) -> BorrowerResponse:
        self._note_repetition(agent_utterance)
        prompt = build_user_prompt(
            agent_utterance, self.history, self.patience_remaining, self.frustration_events
        )
        try:
            reply = self.client.complete(prompt, self.system_prompt).strip()
        except Exception as exc:  # any client failure yields the fixed fallback line
            logger.warning("Borrower simulation failed, using fallback reply (%s)", exc)
            reply = FALLBACK_REPLY
        return self._finish_turn(agent_utterance, reply or FALLBACK_REPLY)


# Agent-line categories recognised by the scripted borrower, checked in order.
UTTERANCE_CUES: List[Tuple[str, Tuple[str, ...]]] = [
    ("DNC_ACK", ("do-not-call", "won't receive any more calls")),
    ("ESCALATE", ("supervisor", "connect you")),
    ("DISPUTE_ACK", ("disputing", "documentation", "validation documents", "sort this out")),
    ("APOLOGY", ("apologize", "sorry for the inconvenience")),
    ("CONFIRM_PLAN", ("agreeing to",)),
    ("LINK", ("link",)),
    ("SETUP_DONE", ("everything is set up", "first payment")),
    ("OFFER", ("payment plan", "monthly payments", "per month")),
    ("COUNTER", ("work better", "comfortably afford")),
    ("CLOSE", (
        "to summarize", "have a great day", "have a good day", "goodbye",
        "we'll talk then", "scheduled a callback",
    )),
    ("CALLBACK", ("call back", "callback")),
    ("PUSHBACK", ("only take a moment", "important matter", "address them")),
    ("DISCLOSURE", ("attempt to collect a debt",)),
    ("VERIFIED", ("verified your identity", "matches our records")),
    ("VERIFY", ("verify your identity", "last four digits")),
    ("CONSENT", ("recorded", "recording")),
    ("BALANCE", ("outstanding balance",)),
    ("EMPATHY", ("i understand", "i hear you", "money can be tight")),
    ("MOVE_ON", ("move forward",)),
    ("GREETING", ("may i speak with", "is this")),
    ("IDENTIFY", ("calling from",)),
    ("CLARIFY", ("sorry", "could you", "questions", "which payment method")),
]


def classify_utterance(text: str) -> str:
    lowered = text.lower()
    for category, cues in UTTERANCE_CUES:
        if any(cue in lowered for cue in cues):
            return category
    return "OTHER"


class ScriptedBorrower(_PatienceTracker):
    """
    Deterministic rule-based borrower.

    Reacts to the category of each agent line according to the persona's
    willingness, finances, temperament and knowledge. Seeded, so the same
    seed and action sequence reproduce the same call.
    """

    def __init__(self, persona: Optional[Persona] = None, seed: Optional[int] = None):
        super().__init__(persona, seed)
        self._reset_memory()

    def _reset_memory(self) -> None:
        self.balance_heard = False
        self.empathy_count = 0
        self.offers_heard = 0
        self.refusals = 0
        self.agreed = False
        self.callback_agreed = False
        self.confused = self.persona.knowledge == "CONFUSED"

    def reset(self, persona: Optional[Persona] = None) -> None:
        self._start_episode(persona)
        self._reset_memory()

    def respond(self, agent_utterance: str) -> BorrowerResponse:
        repeated = self._note_repetition(agent_utterance)
        if repeated and self.persona.temperament == "HOSTILE" and self.frustration_events >= 2:
            reply = "Stop calling me. This is harassment."
        elif self.patience_remaining <= 0:
            reply = "I'm done with this call. Goodbye."
        else:
            reply = self._reply(classify_utterance(agent_utterance))
        return self._finish_turn(agent_utterance, reply)

    def _refuse(self, polite: str) -> str:
        self.refusals += 1
        if self.persona.temperament == "HOSTILE":
            if self.refusals >= 3:
                return "This is a scam and I'll sue you."
            return "Save it. I'm not paying."
        return polite

    def _agree(self, reply: str) -> str:
        self.agreed = True
        return reply

    def _reply(self, category: str) -> str:
        p = self.persona
        hostile = p.temperament == "HOSTILE"

        if category == "GREETING":
            if hostile:
                return "Who is this? What do you want?"
            return "Yes, this is me." if p.temperament == "COOPERATIVE" else "Yes, who is calling?"

        if category == "IDENTIFY":
            return "Great, another collector." if hostile else "Okay, go on."

        if category == "DISCLOSURE":
            if self.confused:
                return "What is this about? I don't understand."
            return "Yeah, I figured." if hostile else "Okay."

        if category == "VERIFY":
            return "Sure, it's 1234."

        if category == "CONSENT":
            return "Whatever, fine." if hostile else "Sure, that's fine."

        if category == "BALANCE":
            self.balance_heard = True
            if p.knowledge == "DISPUTING":
                return "I don't owe that. Prove it."
            if self.confused:
                return "Huh? What do you mean? I don't recognize that."
            if p.financial_situation == "HARDSHIP":
                return "I lost my job, I can barely cover rent."
            if p.financial_situation == "STRUGGLING":
                return "I'm aware, but money is tight right now."
            return "Yes, I know about that balance."

        if category == "EMPATHY":
            self.empathy_count += 1
            self.confused = False
            if not self.balance_heard:
                return "Okay, I'm listening."
            if self.agreed:
                return "Thanks, I appreciate it."
            if p.willingness == "HIGH" or (p.willingness == "MEDIUM" and p.temperament == "COOPERATIVE"):
                return self._agree("That helps. I can pay something, let's do it.")
            if p.willingness == "MEDIUM":
                if self.empathy_count >= 2:
                    return self._agree("Okay, I'll pay something if we keep it small.")
                return "I appreciate that. What are my options?"
            if p.financial_situation == "HARDSHIP":
                return "Thank you. I'm really struggling, can you call me later when I get paid?"
            if hostile:
                return self._refuse("")
            return "I don't know, I have other bills."

        if category == "OFFER":
            self.offers_heard += 1
            if self.agreed:
                return "Yes, like I said, that works."
            if p.willingness == "HIGH":
                return self._agree("That works, I can pay that.")
            if p.willingness == "MEDIUM":
                if self.empathy_count >= 1 or self.offers_heard >= 2 or p.financial_situation == "STABLE":
                    return self._agree("Okay, that works for me.")
                return "That's a lot for me right now."
            if p.financial_situation == "HARDSHIP":
                return self._refuse("I can't pay that much right now.")
            if self.empathy_count >= 1 and self.offers_heard >= 2 and not hostile:
                return self._agree("Fine, I'll pay that.")
            return self._refuse("No way, that's too much.")

        if category == "COUNTER":
            self.offers_heard += 1
            if self.agreed:
                return "That works."
            if p.willingness in ("HIGH", "MEDIUM"):
                return self._agree("I can pay a smaller amount, that works.")
            if hostile:
                return self._refuse("")
            if self.empathy_count >= 1:
                return self._agree("If it's small, I'll pay that.")
            return "I don't know what I can afford."

        if category == "CALLBACK":
            wants_callback = (
                p.financial_situation == "HARDSHIP"
                or (p.willingness == "LOW" and not hostile)
                or self.patience_remaining <= 2
            )
            if wants_callback and not self.agreed:
                self.callback_agreed = True
                return "Yes, please call me later."
            return "No, let's just deal with it now."

        if category == "PUSHBACK":
            return "Make it quick." if hostile else "Alright, go ahead."

        if category == "CONFIRM_PLAN":
            return "Yes, that works." if self.agreed else "I haven't agreed to anything yet."

        if category == "LINK":
            return "Okay, I'll pay through the link." if self.agreed else "I'm not paying anything yet."

        if category == "SETUP_DONE":
            return "Great, thanks." if self.agreed else "Wait, I never agreed to that."

        if category == "MOVE_ON":
            return "Sure." if self.agreed else "Move forward with what? I haven't agreed."

        if category == "DISPUTE_ACK":
            return "Fine, send me the paperwork."

        if category == "APOLOGY":
            return "No problem."

        if category == "DNC_ACK":
            return "Good."

        if category == "ESCALATE":
            return "Fine, put them on."

        if category == "CLOSE":
            if self.agreed or self.callback_agreed:
                return "Sounds good, thanks."
            return "Okay, bye."

        if category == "CLARIFY":
            if self.confused:
                self.confused = False
                return "Oh, okay. I get it now."
            return "I already answered that."

        return "Okay."


__all__ = [
    "CounterpartySimulator",
    "BorrowerSimulator",
    "ScriptedBorrower",
    "detect_signal",
    "detect_hangup",
    "is_similar",
    "classify_utterance",
    "build_system_prompt",
    "build_user_prompt",
    "FALLBACK_REPLY",
]
