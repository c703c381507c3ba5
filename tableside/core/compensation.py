from __future__ import annotations

import logging
import time
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from tableside.core.config import COMPENSATION_MAX_ATTEMPTS
from tableside.core.errors import CompensationFailed

logger = logging.getLogger(__name__)
COMPENSATION_PREFIX = "[COMPENSATION]"

T = TypeVar("T")
Undo = Callable[[], None]


class CompensatingTransaction:
    """Runs committed steps in order and undoes the earlier ones if a later step fails.

    The failing step's error is always re-raised. Undo failures are retried, then
    logged as CompensationFailed and kept in ``failures``.
    """

    def __init__(
        self,
        name: str,
        *,
        max_attempts: int = COMPENSATION_MAX_ATTEMPTS,
        retry_delay_seconds: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.name = name
        self.max_attempts = max(1, max_attempts)
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep
        self._undo_stack: List[Tuple[str, Undo]] = []
        self.failures: List[CompensationFailed] = []

    def step(
        self,
        step_name: str,
        action: Callable[[], T],
        undo: Optional[Callable[[T], None]] = None,
    ) -> T:
        try:
            result = action()
        except BaseException as exc:
            logger.warning(
                "%s step failed tx=%s step=%s error=%s",
                COMPENSATION_PREFIX,
                self.name,
                step_name,
                exc,
            )
            self.compensate()
            raise

        if undo is not None:
            self._undo_stack.append((step_name, _bind(undo, result)))
        return result

    def compensate(self) -> None:
        while self._undo_stack:
            step_name, undo = self._undo_stack.pop()
            self._run_undo(step_name, undo)

    def _run_undo(self, step_name: str, undo: Undo) -> None:
        last_error: BaseException | None = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                undo()
            except Exception as exc:
                last_error = exc
                logger.warning(
                    "%s undo attempt failed tx=%s step=%s attempt=%s/%s error=%s",
                    COMPENSATION_PREFIX,
                    self.name,
                    step_name,
                    attempt,
                    self.max_attempts,
                    exc,
                )
                if attempt < self.max_attempts and self.retry_delay_seconds:
                    self._sleep(self.retry_delay_seconds * attempt)
                continue
            logger.info("%s undo applied tx=%s step=%s", COMPENSATION_PREFIX, self.name, step_name)
            return

        failure = CompensationFailed(
            f"Could not undo step '{step_name}' of '{self.name}'",
            step=step_name,
            cause=last_error,
        )
        self.failures.append(failure)
        logger.critical(
            "%s CompensationFailed tx=%s step=%s error=%s",
            COMPENSATION_PREFIX,
            self.name,
            step_name,
            last_error,
            extra={"error_kind": failure.kind.value},
        )


def _bind(undo: Callable[[Any], None], value: Any) -> Undo:
    return lambda: undo(value)
