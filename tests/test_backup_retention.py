import json
import os
from datetime import datetime, timedelta, timezone

from tierbackup.logs import BackupLogger
from tierbackup.retention import RetentionPolicy, apply_retention, load_archives, plan_retention

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class StubLogger:
    def __init__(self) -> None:
        self.events = []

    def info(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("info", event, extra))

    def error(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("error", event, extra))

    def event(self, *, event: str, phase: str, ok: bool, **extra):  # pragma: no cover - simple recorder
        self.events.append(("event", event, phase, ok, extra))


def _make_archive(base, *, age_days: float, name: str | None = None) -> str:
    created = NOW - timedelta(days=age_days)
    name = name or f"backup-{created.strftime('%Y-%m-%d-%H%M')}.tar.gz"
    path = base / name
    path.write_bytes(b"x" * 10)
    (base / f"{name}.sha256").write_text(f"{'0' * 64}  {name}\n", encoding="utf-8")
    stamp = created.timestamp()
    os.utime(path, (stamp, stamp))
    return name


def test_tier_example_keeps_latest_of_each_tier(tmp_path):
    names = {age: _make_archive(tmp_path, age_days=age) for age in (1, 10, 29, 40)}
    policy = RetentionPolicy(daily_keep=2, weekly_keep=1, monthly_keep=1)

    plan = plan_retention(load_archives(tmp_path), policy, now=NOW)

    assert plan.keep == {names[1], names[10], names[29]}
    assert plan.remove == [names[40]]
    assert plan.reasons[names[1]] == {"daily", "weekly"}
    assert plan.reasons[names[10]] == {"daily"}
    assert plan.reasons[names[29]] == {"monthly"}


def test_apply_retention_deletes_archive_and_checksum(tmp_path):
    names = {age: _make_archive(tmp_path, age_days=age) for age in (1, 10, 29, 40)}
    logger = StubLogger()
    policy = RetentionPolicy(daily_keep=2, weekly_keep=1, monthly_keep=1)

    summary = apply_retention(tmp_path, policy, logger=logger, now=NOW)

    assert summary.removed == [names[40]]
    assert set(summary.kept) == {names[1], names[10], names[29]}
    assert summary.freed_bytes == 10
    assert not (tmp_path / names[40]).exists()
    assert not (tmp_path / f"{names[40]}.sha256").exists()
    assert (tmp_path / f"{names[29]}.sha256").exists()
    removed_events = [entry for entry in logger.events if entry[1] == "backup_removed"]
    assert len(removed_events) == 1


def test_retention_is_idempotent(tmp_path):
    for age in (0.5, 2, 3, 9, 20, 30, 45, 60, 90):
        _make_archive(tmp_path, age_days=age)
    policy = RetentionPolicy(daily_keep=2, weekly_keep=2, monthly_keep=1)

    first = apply_retention(tmp_path, policy, logger=StubLogger(), now=NOW)
    second = apply_retention(tmp_path, policy, logger=StubLogger(), now=NOW)

    assert first.removed
    assert second.removed == []
    assert set(second.kept) == set(first.kept)


def test_empty_and_missing_destinations_are_noops(tmp_path):
    policy = RetentionPolicy()
    assert plan_retention([], policy, now=NOW).keep == set()

    summary = apply_retention(tmp_path / "missing", policy, logger=StubLogger(), now=NOW)
    assert summary.removed == [] and summary.kept == []


def test_twenty_eight_days_counts_as_monthly(tmp_path):
    boundary = _make_archive(tmp_path, age_days=28)
    recent = _make_archive(tmp_path, age_days=27)
    policy = RetentionPolicy(daily_keep=0, weekly_keep=5, monthly_keep=0)

    plan = plan_retention(load_archives(tmp_path), policy, now=NOW)

    assert plan.keep == {recent}
    assert plan.remove == [boundary]


def test_membership_is_exact_not_substring(tmp_path):
    old = _make_archive(tmp_path, age_days=60, name="backup-2024-04-01-1200.tar.gz")
    newer = _make_archive(tmp_path, age_days=1, name="backup-x-backup-2024-04-01-1200.tar.gz")
    policy = RetentionPolicy(daily_keep=1, weekly_keep=0, monthly_keep=0)

    summary = apply_retention(tmp_path, policy, logger=StubLogger(), now=NOW)

    assert summary.removed == [old]
    assert (tmp_path / newer).exists()


def test_zero_counts_remove_everything(tmp_path):
    for age in (1, 15, 35):
        _make_archive(tmp_path, age_days=age)

    summary = apply_retention(
        tmp_path, RetentionPolicy(daily_keep=0, weekly_keep=0, monthly_keep=0), logger=StubLogger(), now=NOW
    )

    assert len(summary.removed) == 3
    assert load_archives(tmp_path) == []


def test_snapshot_and_foreign_files_are_ignored(tmp_path):
    _make_archive(tmp_path, age_days=100)
    (tmp_path / "backup.snar").write_text("{}", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("keep me", encoding="utf-8")
    log_path = tmp_path / "logs" / "backup.log"

    apply_retention(tmp_path, RetentionPolicy(0, 0, 0), logger=BackupLogger(log_path), now=NOW)

    assert (tmp_path / "backup.snar").exists()
    assert (tmp_path / "notes.txt").exists()
    events = [json.loads(line)["event"] for line in log_path.read_text(encoding="utf-8").splitlines()]
    assert events.count("backup_removed") == 1
    assert events[-1] == "retention_applied"
