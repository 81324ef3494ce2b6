from datetime import datetime, timedelta, timezone

import redis
from sqlalchemy import func, select

from data_models.dbo_next_action import NextActionRun
from data_workers import tasks
from data_workers.tasks import get_last_scheduled_run, run_next_actions_task


class FakeRedis:
    def __init__(self, fail=False):
        self.fail = fail
        self.values = {}

    def get(self, key):
        if self.fail:
            raise redis.ConnectionError("redis down")
        return self.values.get(key)

    def set(self, key, value):
        if self.fail:
            raise redis.ConnectionError("redis down")
        self.values[key] = value.encode("utf-8")


def _runs(db_session):
    return db_session.scalar(select(func.count()).select_from(NextActionRun))


def test_first_run_writes_checkpoint(db_session, monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(tasks, "redis_client", fake)

    result = run_next_actions_task("command_center")

    assert result["skipped"] is False
    assert result["runKey"].startswith("nba:system:command_center:command_center:")
    assert _runs(db_session) == 1
    last_run_at = get_last_scheduled_run("command_center", "command_center")
    assert datetime.now(timezone.utc) - last_run_at < timedelta(minutes=1)


def test_recent_checkpoint_skips_run(db_session, monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(tasks, "redis_client", fake)

    run_next_actions_task("command_center")
    second = run_next_actions_task("command_center")

    assert second["skipped"] is True
    assert _runs(db_session) == 1


def test_stale_checkpoint_runs_again(db_session, monkeypatch):
    fake = FakeRedis()
    stale = datetime.now(timezone.utc) - timedelta(hours=2)
    fake.set("nba:last_scheduled_run:founder_growth:founder_growth", stale.isoformat())
    monkeypatch.setattr(tasks, "redis_client", fake)

    result = run_next_actions_task("founder_growth")

    assert result["skipped"] is False
    assert _runs(db_session) == 1


def test_checkpoints_are_per_scope(db_session, monkeypatch):
    monkeypatch.setattr(tasks, "redis_client", FakeRedis())

    run_next_actions_task("command_center")
    other = run_next_actions_task("founder_growth")

    assert other["skipped"] is False
    assert _runs(db_session) == 2


def test_redis_outage_does_not_block_the_run(db_session, monkeypatch):
    monkeypatch.setattr(tasks, "redis_client", FakeRedis(fail=True))

    result = run_next_actions_task("command_center")

    assert result["skipped"] is False
    assert _runs(db_session) == 1
