"""
PersonaForge: counterparty persona presets and random generation.
"""
from typing import Dict, List, Optional

import numpy as np

from callpolicy.models import Persona

PERSONA_PRESETS: Dict[str, Persona] = {
    "cooperative_stable": Persona(
        name="cooperative_stable", willingness="HIGH", financial_situation="STABLE",
        temperament="COOPERATIVE", knowledge="AWARE", patience=8,
    ),
    "cooperative_struggling": Persona(
        name="cooperative_struggling", willingness="MEDIUM", financial_situation="STRUGGLING",
        temperament="COOPERATIVE", knowledge="AWARE", patience=7,
    ),
    "neutral_confused": Persona(
        name="neutral_confused", willingness="MEDIUM", financial_situation="STRUGGLING",
        temperament="NEUTRAL", knowledge="CONFUSED", patience=5,
    ),
    "hostile_struggling": Persona(
        name="hostile_struggling", willingness="LOW", financial_situation="STRUGGLING",
        temperament="HOSTILE", knowledge="AWARE", patience=3,
    ),
    "hostile_disputing": Persona(
        name="hostile_disputing", willingness="LOW", financial_situation="STABLE",
        temperament="HOSTILE", knowledge="DISPUTING", patience=2,
    ),
    "hardship_cooperative": Persona(
        name="hardship_cooperative", willingness="LOW", financial_situation="HARDSHIP",
        temperament="COOPERATIVE", knowledge="AWARE", patience=6,
    ),
    "neutral_disputing": Persona(
        name="neutral_disputing", willingness="LOW", financial_situation="STABLE",
        temperament="NEUTRAL", knowledge="DISPUTING", patience=4,
    ),
    "impatient_aware": Persona(
        name="impatient_aware", willingness="MEDIUM", financial_situation="STABLE",
        temperament="NEUTRAL", knowledge="AWARE", patience=2,
    ),
}

WILLINGNESS_TEXT = {
    "HIGH": "You want to resolve this debt and are open to paying.",
    "MEDIUM": "You might pay if the terms are reasonable.",
    "LOW": "You are reluctant to pay and need convincing.",
}
SITUATION_TEXT = {
    "STABLE": "Your finances are stable; you can afford reasonable payments.",
    "STRUGGLING": "Money is tight; you can only manage small payments.",
    "HARDSHIP": "You are in financial hardship (job loss, medical bills) and can barely cover essentials.",
}
TEMPERAMENT_TEXT = {
    "COOPERATIVE": "You are polite and willing to talk.",
    "NEUTRAL": "You are guarded but civil.",
    "HOSTILE": "You are irritated by collection calls and quick to push back.",
}
KNOWLEDGE_TEXT = {
    "AWARE": "You know about this debt.",
    "CONFUSED": "You are not sure what this debt is about.",
    "DISPUTING": "You believe you do not owe this debt.",
}

_WILLINGNESS = ("LOW", "MEDIUM", "HIGH")
_SITUATIONS = ("STABLE", "STRUGGLING", "HARDSHIP")
_TEMPERAMENTS = ("COOPERATIVE", "NEUTRAL", "HOSTILE")
_KNOWLEDGE = ("AWARE", "CONFUSED", "DISPUTING")


def get_persona(name: str) -> Persona:
    """Look up a preset by name."""
    if name not in PERSONA_PRESETS:
        raise KeyError(f"Unknown persona preset '{name}'. Options: {list(PERSONA_PRESETS)}")
    return PERSONA_PRESETS[name]


def preset_personas() -> List[Persona]:
    return list(PERSONA_PRESETS.values())


def random_persona(rng: Optional[np.random.Generator] = None) -> Persona:
    """
    Draw a persona with temperament-dependent patience.

    Args:
        rng: Random generator (a fresh unseeded one when omitted)

    Returns:
        Persona without a preset name
    """
    rng = rng or np.random.default_rng()
    temperament = str(rng.choice(_TEMPERAMENTS))
    if temperament == "COOPERATIVE":
        patience = int(rng.integers(5, 10))
    elif temperament == "HOSTILE":
        patience = int(rng.integers(1, 5))
    else:
        patience = int(rng.integers(3, 8))

    return Persona(
        willingness=str(rng.choice(_WILLINGNESS)),
        financial_situation=str(rng.choice(_SITUATIONS)),
        temperament=temperament,
        knowledge=str(rng.choice(_KNOWLEDGE)),
        patience=patience,
    )


def sample_persona(rng: Optional[np.random.Generator] = None, use_presets: bool = True) -> Persona:
    rng = rng or np.random.default_rng()
    if use_presets:
        presets = preset_personas()
        return presets[int(rng.integers(len(presets)))]
    return random_persona(rng)


def describe_persona(persona: Persona) -> str:
    """Natural-language persona summary for simulator prompts."""
    return "\n".join([
        f"- Willingness to pay: {persona.willingness}. {WILLINGNESS_TEXT[persona.willingness]}",
        f"- Financial situation: {persona.financial_situation}. {SITUATION_TEXT[persona.financial_situation]}",
        f"- Temperament: {persona.temperament}. {TEMPERAMENT_TEXT[persona.temperament]}",
        f"- Knowledge of debt: {persona.knowledge}. {KNOWLEDGE_TEXT[persona.knowledge]}",
        f"- Patience: {persona.patience}/10.",
    ])


__all__ = [
    "PERSONA_PRESETS",
    "get_persona",
    "preset_personas",
    "random_persona",
    "sample_persona",
    "describe_persona",
]
