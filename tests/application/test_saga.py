import pytest

from storefront.application.saga import Saga, SagaFailed


class Recorder:
    def __init__(self):
        self.events = []

    def action(self, name, error=None):
        async def run():
            self.events.append(name)
            if error:
                raise error
        return run


async def test_runs_steps_in_order():
    rec = Recorder()
    outcome = await (
        Saga("test")
        .step("a", rec.action("a"), compensate=rec.action("undo a"))
        .step("b", rec.action("b"))
        .run()
    )
    assert rec.events == ["a", "b"]
    assert outcome.steps_executed == ["a", "b"]
    assert outcome.compensated is False


async def test_compensates_completed_steps_in_reverse():
    rec = Recorder()
    saga = (
        Saga("test")
        .step("a", rec.action("a"), compensate=rec.action("undo a"))
        .step("b", rec.action("b"), compensate=rec.action("undo b"))
        .step("c", rec.action("c", RuntimeError("boom")), compensate=rec.action("undo c"))
        .step("d", rec.action("d"))
    )
    with pytest.raises(SagaFailed) as exc:
        await saga.run()

    assert rec.events == ["a", "b", "c", "undo b", "undo a"]
    assert exc.value.outcome.step_failed == "c"
    assert exc.value.outcome.compensators_run == 2
    assert isinstance(exc.value.error, RuntimeError)


async def test_compensation_failure_is_counted_and_rest_still_run():
    rec = Recorder()
    saga = (
        Saga("test")
        .step("a", rec.action("a"), compensate=rec.action("undo a"))
        .step("b", rec.action("b"), compensate=rec.action("undo b", ValueError("undo failed")))
        .step("c", rec.action("c", RuntimeError("boom")))
    )
    with pytest.raises(SagaFailed) as exc:
        await saga.run()

    assert rec.events == ["a", "b", "c", "undo b", "undo a"]
    assert exc.value.outcome.compensators_failed == 1
    assert exc.value.outcome.compensators_run == 1
    assert str(exc.value.error) == "boom"
