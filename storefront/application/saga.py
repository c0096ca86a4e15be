import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[None]]


@dataclass
class SagaStep:
    name: str
    action: Action
    compensate: Optional[Action] = None


@dataclass
class SagaOutcome:
    steps_executed: List[str] = field(default_factory=list)
    step_failed: Optional[str] = None
    compensators_run: int = 0
    compensators_failed: int = 0

    @property
    def compensated(self) -> bool:
        return self.compensators_run > 0


class SagaFailed(Exception):
    """Шаг саги упал; компенсации уже выполнены. Исходная ошибка в __cause__"""

    def __init__(self, outcome: SagaOutcome, error: Exception):
        self.outcome = outcome
        self.error = error
        super().__init__(f"Шаг '{outcome.step_failed}' завершился ошибкой: {error}")


class Saga:
    """Упорядоченный список пар (действие, компенсация).

    Шаги выполняются строго по порядку. Если шаг падает, компенсации уже
    выполненных шагов запускаются в обратном порядке. Ошибка компенсации
    логируется и не подменяет исходную ошибку.
    """

    def __init__(self, name: str):
        self._name = name
        self._steps: List[SagaStep] = []

    def step(self, name: str, action: Action, compensate: Optional[Action] = None) -> "Saga":
        self._steps.append(SagaStep(name=name, action=action, compensate=compensate))
        return self

    async def run(self) -> SagaOutcome:
        outcome = SagaOutcome()
        completed: List[SagaStep] = []

        for step in self._steps:
            try:
                await step.action()
            except Exception as e:
                outcome.step_failed = step.name
                logger.warning(f"[{self._name}] шаг '{step.name}' упал: {e}. Запускаем компенсации")
                await self._compensate(completed, outcome)
                raise SagaFailed(outcome, e) from e

            completed.append(step)
            outcome.steps_executed.append(step.name)

        return outcome

    async def _compensate(self, completed: List[SagaStep], outcome: SagaOutcome) -> None:
        for step in reversed(completed):
            if step.compensate is None:
                continue
            try:
                await step.compensate()
                outcome.compensators_run += 1
                logger.info(f"[{self._name}] компенсация шага '{step.name}' выполнена")
            except Exception as e:
                outcome.compensators_failed += 1
                logger.error(f"[{self._name}] компенсация шага '{step.name}' не удалась: {e}", exc_info=True)
