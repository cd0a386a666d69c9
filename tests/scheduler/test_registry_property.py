"""Property-based tests for beat schedule registration.

**Feature: billing-engine, Property 10: Idempotent Schedule Registration**
"""

from celery.schedules import crontab
from hypothesis import given, settings, strategies as st

from billing_engine.core.celery_app import celery_app
from billing_engine.modules.scheduler.registry import (
    TASK_PREFIX,
    ScheduledJob,
    default_jobs,
    register_schedules,
)

JOB_NAMES = [job.name for job in default_jobs()]
JOB_TASKS = [job.task for job in default_jobs()]

stale_entry_strategy = st.dictionaries(
    keys=st.one_of(st.sampled_from(JOB_NAMES), st.text(min_size=1, max_size=20)),
    values=st.fixed_dictionaries(
        {"task": st.one_of(st.sampled_from(JOB_TASKS), st.just("other.task")), "schedule": st.just(60.0)}
    ),
    max_size=8,
)


class TestRegistration:
    """**Feature: billing-engine, Property 10: Idempotent Schedule Registration**"""

    @given(existing=stale_entry_strategy, runs=st.integers(min_value=1, max_value=4))
    @settings(max_examples=100)
    def test_exactly_one_entry_per_job(self, existing: dict, runs: int) -> None:
        schedule = dict(existing)
        for _ in range(runs):
            register_schedules(schedule)

        for job in default_jobs():
            matching = [key for key, entry in schedule.items() if entry["task"] == job.task]
            assert matching == [job.name]
            assert isinstance(schedule[job.name]["schedule"], crontab)

    @given(existing=stale_entry_strategy)
    @settings(max_examples=100)
    def test_unrelated_entries_survive(self, existing: dict) -> None:
        unrelated = {
            key: entry for key, entry in existing.items()
            if key not in JOB_NAMES and entry["task"] not in JOB_TASKS
        }
        schedule = dict(existing)
        register_schedules(schedule)

        for key, entry in unrelated.items():
            assert schedule[key] == entry

    def test_removed_keys_are_reported(self) -> None:
        schedule = {
            "legacy-expiration": {"task": f"{TASK_PREFIX}.expire_due_subscriptions", "schedule": 60.0},
            "keep-me": {"task": "other.task", "schedule": 60.0},
        }
        removed = register_schedules(schedule)

        assert removed == ["legacy-expiration"]
        assert "keep-me" in schedule

    def test_custom_jobs_can_be_registered(self) -> None:
        schedule: dict = {}
        job = ScheduledJob(name="nightly", task="tests.nightly", hour=2, minute=15)
        register_schedules(schedule, [job])

        assert list(schedule) == ["nightly"]
        assert schedule["nightly"]["schedule"] == crontab(minute=15, hour=2)


class TestCeleryBeat:
    def test_app_schedule_contains_every_sweep_once(self) -> None:
        beat_schedule = celery_app.conf.beat_schedule
        for job in default_jobs():
            assert [k for k, v in beat_schedule.items() if v["task"] == job.task] == [job.name]

    def test_sweep_tasks_are_registered_under_scheduled_names(self) -> None:
        import billing_engine.modules.scheduler.tasks  # noqa: F401

        for task in JOB_TASKS:
            assert task in celery_app.tasks
