from __future__ import annotations

import pytest

from app.monitoring.prometheus_metrics import REGISTRY
from app.services.saga import CompensationReport, CompensationStack


class TestCompensationStack:
    @pytest.mark.asyncio
    async def test_unwinds_in_reverse_order(self):
        order = []
        stack = CompensationStack("saga-1")

        for name in ("first", "second", "third"):

            async def undo(name=name):
                order.append(name)

            stack.push(name, undo)

        report = await stack.unwind("boom")

        assert order == ["third", "second", "first"]
        assert report.ok
        assert report.completed == ["third", "second", "first"]
        assert report.cause == "boom"

    @pytest.mark.asyncio
    async def test_final_actions_run_last_and_see_failures(self):
        order = []
        seen = {}
        stack = CompensationStack()

        async def cancel_event():
            order.append("cancel_event")
            raise RuntimeError("calendar down")

        async def mark_cancelled(report: CompensationReport):
            order.append("mark_cancelled")
            seen["failed"] = list(report.failed)

        async def credit():
            order.append("credit")

        stack.push("cancel_event", cancel_event)
        stack.push_final("mark_cancelled", mark_cancelled)
        stack.push("credit", credit)

        report = await stack.unwind()

        assert order == ["credit", "cancel_event", "mark_cancelled"]
        assert seen["failed"] == [("cancel_event", "calendar down")]
        assert not report.ok
        assert report.describe_failures() == "cancel_event: calendar down"

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_remaining_actions(self):
        ran = []
        stack = CompensationStack()

        async def ok():
            ran.append("ok")

        async def broken():
            raise ValueError()

        stack.push("ok", ok)
        stack.push("broken", broken)

        report = await stack.unwind()

        assert ran == ["ok"]
        assert report.failed == [("broken", "ValueError")]

    @pytest.mark.asyncio
    async def test_unwind_runs_once(self):
        calls = []
        stack = CompensationStack()

        async def undo():
            calls.append(1)

        stack.push("undo", undo)
        await stack.unwind()
        second = await stack.unwind()

        assert calls == [1]
        assert second.completed == []

    @pytest.mark.asyncio
    async def test_cleared_stack_has_nothing_to_undo(self):
        stack = CompensationStack()

        async def undo():
            raise AssertionError("should not run")

        stack.push("undo", undo)
        stack.clear()

        assert len(stack) == 0
        assert (await stack.unwind()).completed == []


class TestCompensationMetrics:
    @staticmethod
    def _count(action: str, result: str) -> float:
        value = REGISTRY.get_sample_value(
            "booking_saga_compensations_total", {"action": action, "result": result}
        )
        return value or 0.0

    @pytest.mark.asyncio
    async def test_outcomes_are_labelled_success_and_failed(self):
        stack = CompensationStack("saga-metrics")

        async def cancel_admin_event():
            raise RuntimeError("calendar down")

        async def cancel_user_event():
            return None

        stack.push("cancel_admin_event_metrics", cancel_admin_event)
        stack.push("cancel_user_event_metrics", cancel_user_event)
        failed_before = self._count("cancel_admin_event_metrics", "failed")
        success_before = self._count("cancel_user_event_metrics", "success")

        await stack.unwind("persist failed")

        assert self._count("cancel_admin_event_metrics", "failed") == failed_before + 1
        assert self._count("cancel_user_event_metrics", "success") == success_before + 1
        assert self._count("cancel_admin_event_metrics", "error") == 0.0
