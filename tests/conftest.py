from typing import Optional

import pytest

from callpolicy.factories.borrower import ScriptedBorrower
from callpolicy.factories.environment import DebtCollectionEnv
from callpolicy.factories.persona_forge import get_persona
from callpolicy.factories.utterances import TemplateUtteranceGenerator
from callpolicy.models import CaseData, EnvironmentConfig, create_test_case


@pytest.fixture
def case() -> CaseData:
    return create_test_case()


@pytest.fixture
def cooperative():
    return get_persona("cooperative_stable")


@pytest.fixture
def make_env(case):
    def _make(
        counterparty=None,
        generator=None,
        case_overrides=None,
        config: Optional[EnvironmentConfig] = None,
        seed: int = 0,
    ) -> DebtCollectionEnv:
        env_case = case.model_copy(update=case_overrides or {})
        return DebtCollectionEnv(
            env_case,
            generator or TemplateUtteranceGenerator(seed=seed),
            counterparty or ScriptedBorrower(seed=seed),
            config=config,
            seed=seed,
        )
    return _make
