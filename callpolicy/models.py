"""
Data models and vocabularies for the collection-call policy trainer.
Defines Pydantic models for case facts, configs, observations and episode records.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


DialogueState = Literal[
    "OPENING",
    "DISCLOSURE",
    "IDENTITY_VERIFICATION",
    "CONSENT_RECORDING",
    "DEBT_CONTEXT",
    "NEGOTIATION",
    "PAYMENT_SETUP",
    "WRAPUP",
    "END_CALL",
    "WRONG_PARTY_FLOW",
    "DISPUTE_FLOW",
    "DO_NOT_CALL",
    "ESCALATE_HUMAN",
    "CALLBACK_SCHEDULED",
]

Action = Literal[
    "PROCEED",
    "ASK_CLARIFY",
    "HANDLE_PUSHBACK",
    "IDENTIFY_SELF",
    "ASK_VERIFICATION",
    "CONFIRM_IDENTITY",
    "EMPATHIZE",
    "OFFER_PLAN",
    "COUNTER_OFFER",
    "REQUEST_CALLBACK",
    "CONFIRM_PLAN",
    "SEND_PAYMENT_LINK",
    "SUMMARIZE",
    "ACKNOWLEDGE_DISPUTE",
    "ACKNOWLEDGE_DNC",
    "APOLOGIZE",
    "ESCALATE",
]

Signal = Literal[
    "STOP_CONTACT",
    "DISPUTE",
    "WRONG_PARTY",
    "ATTORNEY_REPRESENTED",
    "INCONVENIENT_TIME",
    "CALLBACK_REQUEST",
    "AGREEMENT",
    "REFUSAL",
    "CONFUSION",
    "HOSTILITY",
]

TerminalReason = Literal[
    "PAYMENT_SETUP_COMPLETE",
    "PROMISE_TO_PAY",
    "CALLBACK_SCHEDULED",
    "BORROWER_HANGUP",
    "COMPLIANCE_VIOLATION",
    "ESCALATE_HUMAN",
    "MAX_TURNS_REACHED",
    "END_CALL_REACHED",
]

DebtBucket = Literal["LOW", "MEDIUM", "HIGH"]
DaysPastDueBucket = Literal["30", "60", "90", "120+"]
Sentiment = Literal["POSITIVE", "NEUTRAL", "NEGATIVE"]
RiskLevel = Literal["LOW", "MEDIUM", "HIGH"]

Willingness = Literal["LOW", "MEDIUM", "HIGH"]
FinancialSituation = Literal["STABLE", "STRUGGLING", "HARDSHIP"]
Temperament = Literal["COOPERATIVE", "NEUTRAL", "HOSTILE"]
Knowledge = Literal["AWARE", "CONFUSED", "DISPUTING"]

SlotValue = Union[str, int, float, bool]

MAIN_FLOW_ORDER: Tuple[str, ...] = (
    "OPENING",
    "DISCLOSURE",
    "IDENTITY_VERIFICATION",
    "CONSENT_RECORDING",
    "DEBT_CONTEXT",
    "NEGOTIATION",
    "PAYMENT_SETUP",
    "WRAPUP",
    "END_CALL",
)

SPECIAL_STATES: Tuple[str, ...] = (
    "WRONG_PARTY_FLOW",
    "DISPUTE_FLOW",
    "DO_NOT_CALL",
    "ESCALATE_HUMAN",
    "CALLBACK_SCHEDULED",
)

ALL_STATES: Tuple[str, ...] = MAIN_FLOW_ORDER + SPECIAL_STATES

ALL_ACTIONS: Tuple[str, ...] = (
    "PROCEED",
    "ASK_CLARIFY",
    "HANDLE_PUSHBACK",
    "IDENTIFY_SELF",
    "ASK_VERIFICATION",
    "CONFIRM_IDENTITY",
    "EMPATHIZE",
    "OFFER_PLAN",
    "COUNTER_OFFER",
    "REQUEST_CALLBACK",
    "CONFIRM_PLAN",
    "SEND_PAYMENT_LINK",
    "SUMMARIZE",
    "ACKNOWLEDGE_DISPUTE",
    "ACKNOWLEDGE_DNC",
    "APOLOGIZE",
    "ESCALATE",
)

ALL_SIGNALS: Tuple[str, ...] = (
    "STOP_CONTACT",
    "DISPUTE",
    "WRONG_PARTY",
    "ATTORNEY_REPRESENTED",
    "INCONVENIENT_TIME",
    "CALLBACK_REQUEST",
    "AGREEMENT",
    "REFUSAL",
    "CONFUSION",
    "HOSTILITY",
)

TERMINAL_STATES: Tuple[str, ...] = ("END_CALL", "DO_NOT_CALL", "ESCALATE_HUMAN")


class CaseData(BaseModel):
    """Debtor account facts for a single outbound call."""
    id: str
    debtor_name: str
    debtor_phone: str
    creditor_name: str
    amount_due: float = Field(ge=0)
    days_past_due: int = Field(ge=0)
    jurisdiction: str
    timezone: str
    language: str = "en"
    dnc: bool = False
    disputed: bool = False
    wrong_party: bool = False
    recording_consent: Optional[bool] = None
    identity_verified: Optional[bool] = None
    attempt_count_today: int = Field(default=0, ge=0)
    attempt_count_total: int = Field(default=0, ge=0)


class PolicyConfig(BaseModel):
    """Jurisdiction rules applied by the compliance engine."""
    jurisdiction: str = "CA"
    call_window_start: str = Field(default="08:00", pattern=r"^\d{2}:\d{2}$")
    call_window_end: str = Field(default="21:00", pattern=r"^\d{2}:\d{2}$")
    max_attempts_per_day: int = Field(default=3, ge=1)
    max_attempts_total: int = Field(default=7, ge=1)
    prohibited_phrases: List[str] = Field(
        default_factory=lambda: [
            "arrest",
            "jail",
            "lawsuit",
            "garnish your wages",
            "seize your property",
            "criminal",
        ]
    )
    require_recording_consent: bool = True


class ComplianceOutput(BaseModel):
    """Per-turn compliance decision. Computed fresh every turn."""
    allowed: bool
    forced_transition: Optional[DialogueState] = None
    required_templates: List[str] = Field(default_factory=list)
    blocked_reasons: List[str] = Field(default_factory=list)
    risk_level: RiskLevel = "LOW"


class Persona(BaseModel):
    """Counterparty configuration consumed by the borrower simulators."""
    willingness: Willingness
    financial_situation: FinancialSituation
    temperament: Temperament
    knowledge: Knowledge
    patience: int = Field(ge=1, le=10)
    name: Optional[str] = None


class ObservationState(BaseModel):
    """Bounded feature record derived from the dialogue each turn."""
    model_config = ConfigDict(frozen=True)

    dialogue_state: DialogueState
    turn_count: int = Field(ge=0)
    time_in_state: int = Field(ge=0)
    debt_bucket: DebtBucket
    days_past_due_bucket: DaysPastDueBucket
    prior_attempts: int = Field(ge=0)
    identity_verified: bool = False
    disclosure_complete: bool = False
    last_signal: Optional[Signal] = None
    sentiment: Sentiment = "NEUTRAL"
    objections_raised: int = Field(default=0, ge=0)
    offers_made: int = Field(default=0, ge=0)


class RewardBreakdown(BaseModel):
    """Decomposed reward for a single step."""
    shaping: float = 0.0
    terminal: float = 0.0
    turn_penalty: float = 0.0
    total: float = 0.0


class ShapingRewards(BaseModel):
    identity_verified: float = 0.1
    disclosure_complete: float = 0.1
    entered_negotiation: float = 0.2
    willingness_signal: float = 0.2
    offer_accepted: float = 0.3
    repeated_action: float = -0.1


class TerminalRewards(BaseModel):
    payment_setup_complete: float = 1.0
    promise_to_pay: float = 0.5
    callback_scheduled: float = 0.2
    hangup_after_disclosure: float = -0.3
    hangup_before_disclosure: float = -0.5
    compliance_violation: float = -1.0
    escalate_human: float = 0.0
    max_turns_reached: float = -0.2
    end_call_reached: float = 0.0


class RewardConfig(BaseModel):
    """Reward constants. Defaults favour completed payment setups."""
    shaping: ShapingRewards = Field(default_factory=ShapingRewards)
    per_turn: float = -0.05
    terminal: TerminalRewards = Field(default_factory=TerminalRewards)


class EnvironmentConfig(BaseModel):
    """Episode limits and rule sets used by the environment."""
    max_turns_per_episode: int = Field(default=30, ge=1)
    reward: RewardConfig = Field(default_factory=RewardConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    call_time: Optional[str] = Field(default="10:00", pattern=r"^\d{2}:\d{2}$")
    enforce_compliance: bool = True


class TrainingConfig(BaseModel):
    """Training loop schedule."""
    num_episodes: int = Field(default=500, ge=1)
    eval_interval: int = Field(default=50, ge=1)
    eval_episodes: int = Field(default=20, ge=0)
    log_interval: int = Field(default=50, ge=1)
    personas: Optional[List[Persona]] = None
    seed: Optional[int] = None


class BorrowerResponse(BaseModel):
    """Counterparty reply to a single agent utterance."""
    text: str
    should_hangup: bool = False
    detected_signal: Optional[Signal] = None
    patience_remaining: float = 0.0


class TransitionInfo(BaseModel):
    """Diagnostics attached to every step."""
    from_state: DialogueState
    to_state: DialogueState
    was_forced: bool = False
    reason: str = ""
    agent_utterance: str = ""
    borrower_response: str = ""
    detected_signals: List[Signal] = Field(default_factory=list)
    terminal_reason: Optional[TerminalReason] = None
    reward_breakdown: RewardBreakdown = Field(default_factory=RewardBreakdown)
    risk_level: RiskLevel = "LOW"
    required_templates: List[str] = Field(default_factory=list)
    blocked_reasons: List[str] = Field(default_factory=list)
    preempted: bool = False
    language_issues: List[str] = Field(default_factory=list)


class Transition(BaseModel):
    state: ObservationState
    action: Action
    reward: float
    next_state: ObservationState
    done: bool
    info: TransitionInfo


class StepResult(BaseModel):
    observation: ObservationState
    reward: float
    done: bool
    info: TransitionInfo


class Trajectory(BaseModel):
    """Completed (or in-progress) episode."""
    transitions: List[Transition] = Field(default_factory=list)
    total_return: float = 0.0
    length: int = 0
    outcome: TerminalReason = "END_CALL_REACHED"
    persona: Optional[Persona] = None


class EpisodeRecord(BaseModel):
    """Plain-serializable episode record written to the results store."""
    episode_id: str
    total_return: float
    length: int
    outcome: TerminalReason
    persona: Optional[Persona] = None
    transitions: List[Dict[str, Any]] = Field(default_factory=list)
    recorded_at: datetime = Field(default_factory=datetime.now)


class CurvePoint(BaseModel):
    """Learning-curve sample."""
    episode: int
    train_return: float
    eval_return: Optional[float] = None
    eval_success_rate: Optional[float] = None


def create_test_case() -> CaseData:
    """Canonical case used by experiments and tests."""
    return CaseData(
        id="test-001",
        debtor_name="John Smith",
        debtor_phone="555-123-4567",
        creditor_name="ABC Collections",
        amount_due=2500.0,
        days_past_due=90,
        jurisdiction="CA",
        timezone="America/Los_Angeles",
        language="en",
        dnc=False,
        disputed=False,
        wrong_party=False,
        recording_consent=None,
        identity_verified=None,
        attempt_count_today=0,
        attempt_count_total=2,
    )
