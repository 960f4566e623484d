import asyncio
import pytest

from errors import DatabaseError, SchedulerError
from models import PassSummary
from scheduler import STATIC_JOBS, WEATHER_JOB_ID, WeatherAlertScheduler, parse_cron_expression


class StubPipeline:
    def __init__(self, error=None):
        self.error = error
        self.runs = 0

    async def run_once(self):
        self.runs += 1
        if self.error:
            raise self.error
        return PassSummary()


def trigger_fields(trigger):
    return {field.name: str(field) for field in trigger.fields}


def test_six_field_expression_with_seconds():
    fields = trigger_fields(parse_cron_expression("0 0 */2 * * *"))

    assert fields["second"] == "0"
    assert fields["minute"] == "0"
    assert fields["hour"] == "*/2"


def test_five_field_expression_fires_at_second_zero():
    fields = trigger_fields(parse_cron_expression("30 6 * * mon-fri"))

    assert fields["second"] == "0"
    assert fields["minute"] == "30"
    assert fields["hour"] == "6"
    assert fields["day_of_week"] == "mon-fri"


def test_question_mark_is_wildcard():
    fields = trigger_fields(parse_cron_expression("0 15 10 ? * *"))
    assert fields["day"] == "*"


@pytest.mark.parametrize("expression", ["", "* * *", "0 0 99 * * *", "a b c d e f"])
def test_invalid_expressions(expression):
    with pytest.raises(SchedulerError):
        parse_cron_expression(expression)


def test_invalid_expression_fails_at_construction():
    with pytest.raises(SchedulerError):
        WeatherAlertScheduler(StubPipeline(), "not a cron")


def test_static_jobs_describe_weather_fetch():
    assert [job["id"] for job in STATIC_JOBS] == [WEATHER_JOB_ID]
    assert STATIC_JOBS[0]["schedule"] == "0 0 */2 * * *"


@pytest.mark.asyncio
async def test_start_registers_job_and_stop_clears_loop():
    scheduler = WeatherAlertScheduler(StubPipeline())

    await scheduler.start()
    try:
        job = scheduler.scheduler.get_job(WEATHER_JOB_ID)
        assert job is not None
        assert job.max_instances == 1
        assert job.next_run_time is not None
        assert scheduler.is_running
    finally:
        await scheduler.stop()

    assert not scheduler.is_running


@pytest.mark.asyncio
async def test_job_errors_are_logged_not_raised(caplog):
    scheduler = WeatherAlertScheduler(StubPipeline(error=DatabaseError("no such table: users")))

    await scheduler.weather_fetch_job()

    assert scheduler.pipeline.runs == 1
    assert "Weather fetch failed" in caplog.text


@pytest.mark.asyncio
async def test_submit_runs_coroutine_on_scheduler_loop():
    scheduler = WeatherAlertScheduler(StubPipeline())
    await scheduler.start()
    try:
        future = scheduler.submit(scheduler.pipeline.run_once())
        summary = await asyncio.wrap_future(future)
    finally:
        await scheduler.stop()

    assert isinstance(summary, PassSummary)
    assert scheduler.pipeline.runs == 1


def test_submit_when_not_running_raises():
    scheduler = WeatherAlertScheduler(StubPipeline())
    coro = scheduler.pipeline.run_once()

    with pytest.raises(SchedulerError, match="not running"):
        scheduler.submit(coro)

    assert scheduler.pipeline.runs == 0
