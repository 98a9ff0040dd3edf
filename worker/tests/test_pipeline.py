import pytest

from venue_pipeline.core.pipeline import PipelineAbort, PipelineContext, Stage, StageResult, run_pipeline


def make_stage(name, calls, result=None, error=None):
    def run(ctx):
        calls.append(name)
        if error is not None:
            raise error
        return result if result is not None else StageResult.ok(done=1)

    return Stage(name=name, run=run)


def test_runs_stages_in_order(settings, store):
    calls = []
    stages = [make_stage("a", calls), make_stage("b", calls)]

    reports = run_pipeline(PipelineContext(settings=settings, store=store), stages)

    assert calls == ["a", "b"]
    assert [report.name for report in reports] == ["a", "b"]
    assert reports[0].result.stats == {"done": 1}


def test_exception_aborts_and_names_stage(settings, store):
    calls = []
    boom = RuntimeError("database went away")
    stages = [make_stage("a", calls), make_stage("b", calls, error=boom), make_stage("c", calls)]

    with pytest.raises(PipelineAbort) as excinfo:
        run_pipeline(PipelineContext(settings=settings, store=store), stages)

    assert calls == ["a", "b"]
    assert excinfo.value.stage_name == "b"
    assert excinfo.value.__cause__ is boom
    assert [report.name for report in excinfo.value.completed] == ["a"]
    assert "stage 'b'" in str(excinfo.value)


def test_failed_result_aborts(settings, store):
    calls = []
    stages = [make_stage("a", calls, result=StageResult.failed("service down")), make_stage("b", calls)]

    with pytest.raises(PipelineAbort) as excinfo:
        run_pipeline(PipelineContext(settings=settings, store=store), stages)

    assert calls == ["a"]
    assert excinfo.value.reason == "service down"


def test_context_is_immutable(settings, store):
    ctx = PipelineContext(settings=settings, store=store)
    with pytest.raises(AttributeError):
        ctx.tile_size = 1.0
