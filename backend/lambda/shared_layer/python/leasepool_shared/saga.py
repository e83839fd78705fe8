"""leasepool_shared.saga — Forward steps paired with compensations.

Steps run in order. When one fails, the compensations of the steps that
already committed run in reverse order. Each compensation is attempted even
if an earlier one failed; compensations are never compensated themselves.
If any compensation fails, the run ends with ``CompensationFailure`` carrying
the original error; otherwise the original error is re-raised unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from .errors import CompensationFailure

logger = logging.getLogger(__name__)


@dataclass
class SagaStep:
    name: str
    action: Callable[[], Any]
    compensation: Optional[Callable[[], Any]] = None


class Saga:
    def __init__(self, name: str):
        self.name = name
        self._steps: List[SagaStep] = []

    def step(self, name: str, action: Callable[[], Any], compensation: Optional[Callable[[], Any]] = None) -> "Saga":
        self._steps.append(SagaStep(name=name, action=action, compensation=compensation))
        return self

    def run(self) -> List[Any]:
        """Run every step; return their results in order."""
        committed: List[SagaStep] = []
        results: List[Any] = []
        for step in self._steps:
            try:
                results.append(step.action())
            except Exception as exc:
                logger.error("[ERROR] %s: step %s failed: %s", self.name, step.name, exc)
                self._compensate(committed, exc)
                raise
            committed.append(step)
        return results

    def _compensate(self, committed: List[SagaStep], cause: BaseException) -> None:
        failures: List[BaseException] = []
        for step in reversed(committed):
            if step.compensation is None:
                continue
            try:
                step.compensation()
                logger.info("[INFO] %s: compensated step %s", self.name, step.name)
            except Exception as exc:
                logger.error("[ERROR] %s: compensation for step %s failed: %s", self.name, step.name, exc)
                failures.append(exc)
        if failures:
            raise CompensationFailure(f"{self.name} rollback failed", cause, failures) from cause
