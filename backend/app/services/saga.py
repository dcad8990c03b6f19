# backend/app/services/saga.py
"""
Compensation stack for multi-step operations that span independent systems.

Each successful step pushes its undo action. On failure the stack unwinds in
reverse order of creation. Actions pushed with ``push_final`` update the
record that references the undone side effects, so they always run after
every regular action, regardless of when they were pushed; they receive the
unwind report so they can note which undo actions failed.

Unwinding is best-effort: a failed undo is logged and recorded in the
report, and the remaining actions still run.
"""

from dataclasses import dataclass, field
import logging
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)


@dataclass
class CompensationReport:
    cause: str = ""
    completed: List[str] = field(default_factory=list)
    failed: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def describe_failures(self) -> str:
        return "; ".join(f"{name}: {error}" for name, error in self.failed)


@dataclass
class _Action:
    name: str
    undo: Callable[..., Awaitable[Any]]
    final: bool = False


class CompensationStack:
    def __init__(self, saga_id: Optional[str] = None):
        self.saga_id = saga_id
        self._actions: List[_Action] = []
        self._unwound = False

    def __len__(self) -> int:
        return len(self._actions)

    @property
    def names(self) -> List[str]:
        return [action.name for action in self._actions]

    def push(self, name: str, undo: Callable[[], Awaitable[Any]]) -> None:
        self._actions.append(_Action(name, undo))

    def push_final(self, name: str, undo: Callable[[CompensationReport], Awaitable[Any]]) -> None:
        self._actions.append(_Action(name, undo, final=True))

    def clear(self) -> None:
        """Forget all actions once the operation has committed."""
        self._actions.clear()

    async def unwind(self, cause: str = "") -> CompensationReport:
        """Run every pushed undo action once; later calls are no-ops."""
        report = CompensationReport(cause=cause)
        if self._unwound:
            return report
        self._unwound = True

        regular = [a for a in reversed(self._actions) if not a.final]
        finals = [a for a in reversed(self._actions) if a.final]

        for action in regular:
            await self._run(action, report)
        for action in finals:
            await self._run(action, report, report)

        self._actions.clear()
        return report

    async def _run(self, action: _Action, report: CompensationReport, *args: Any) -> None:
        try:
            await action.undo(*args)
        except Exception as exc:
            report.failed.append((action.name, str(exc) or type(exc).__name__))
            prometheus_metrics.record_compensation(action.name, "failed")
            logger.error(
                "saga_compensation_failed",
                extra={"saga_id": self.saga_id, "action": action.name, "error": str(exc)},
                exc_info=True,
            )
            return
        report.completed.append(action.name)
        prometheus_metrics.record_compensation(action.name, "success")
        logger.info(
            "saga_compensation_succeeded",
            extra={"saga_id": self.saga_id, "action": action.name},
        )
