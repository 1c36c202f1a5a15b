"""
Minimal saga runner for work that spans independently failing systems.

Steps run in order and each step's result is stored in a shared context under
the step's name. When a step raises, the compensations of the steps that
already completed run in reverse order and the original error propagates.
Compensation failures and after-commit failures are logged and absorbed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)

Action = Callable[[dict], Any]


@dataclass
class SagaStep:
    name: str
    action: Action
    compensation: Optional[Action] = None


class Saga:
    def __init__(self, name: str):
        self.name = name
        self._steps: list[SagaStep] = []
        self._after_commit: list[SagaStep] = []

    def step(
        self, name: str, action: Action, compensation: Optional[Action] = None
    ) -> "Saga":
        self._steps.append(SagaStep(name, action, compensation))
        return self

    def after_commit(self, name: str, action: Action) -> "Saga":
        """Register best-effort work that only runs once every step succeeded."""
        self._after_commit.append(SagaStep(name, action))
        return self

    def run(self) -> dict:
        context: dict = {}
        completed: list[SagaStep] = []
        for step in self._steps:
            try:
                context[step.name] = step.action(context)
            except Exception:
                logger.info(
                    "Saga %s failed at step %s; compensating %d step(s)",
                    self.name,
                    step.name,
                    len(completed),
                )
                self._compensate(completed, context)
                raise
            completed.append(step)

        for step in self._after_commit:
            try:
                context[step.name] = step.action(context)
            except Exception as exc:
                logger.warning(
                    "Saga %s: after-commit step %s failed: %s",
                    self.name,
                    step.name,
                    exc,
                )
        return context

    def _compensate(self, completed: list[SagaStep], context: dict) -> None:
        for step in reversed(completed):
            if step.compensation is None:
                continue
            try:
                step.compensation(context)
            except Exception as exc:
                logger.warning(
                    "Saga %s: compensation for %s failed: %s",
                    self.name,
                    step.name,
                    exc,
                )
