"""leasepool_shared.tasks — Ordered multi-step runner with per-step failure policy.

Each step is ``handler(context, lease) -> None``. A step added with
``fail_on_error=True`` stops the run when it raises; other steps record their
error and let the run continue. Every error is kept on the runner.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Tuple

from .models import Lease, lease_log_id

logger = logging.getLogger(__name__)

StepHandler = Callable[[Any, Lease], None]


class StepFailure(Exception):
    """Error raised by one named step."""

    def __init__(self, step: str, error: BaseException):
        self.step = step
        self.error = error
        super().__init__(f"{step}: {error}")


@dataclass
class _Step:
    name: str
    handler: StepHandler
    fail_on_error: bool


class MultiStepTaskRunner:
    def __init__(self):
        self._steps: List[_Step] = []
        self.errors: List[StepFailure] = []

    def add_step(self, name: str, handler: StepHandler, fail_on_error: bool = False) -> "MultiStepTaskRunner":
        self._steps.append(_Step(name=name, handler=handler, fail_on_error=fail_on_error))
        return self

    def execute(self, context: Any, lease: Lease) -> Tuple[bool, Optional[BaseException]]:
        """Run steps in order; return ``(all_succeeded, fatal_error)``."""
        self.errors = []
        for step in self._steps:
            try:
                step.handler(context, lease)
            except Exception as exc:
                self.errors.append(StepFailure(step.name, exc))
                if step.fail_on_error:
                    logger.error("[ERROR] Step %s failed for %s, stopping: %s", step.name, lease_log_id(lease), exc)
                    return False, exc
                logger.warning("[WARNING] Step %s failed for %s, continuing: %s", step.name, lease_log_id(lease), exc)
        return not self.errors, None
