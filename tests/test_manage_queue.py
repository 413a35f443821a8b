"""Tests for the queue management CLI."""

from datetime import timedelta

import pytest

import manage_queue
from postflow.exceptions import ConfigurationError, JobNotFoundError
from postflow.scheduling.models import RescheduleResult, ResultStatus
from tests.conftest import make_job


class TestParser:
    def test_enqueue_arguments(self):
        args = manage_queue.build_parser().parse_args(
            ["enqueue", "launch", "instagram", "2026-11-03T09:00:00Z", "--media", "a.jpg", "b.jpg", "--override"]
        )
        assert args.command == "enqueue"
        assert args.media == ["a.jpg", "b.jpg"]
        assert args.override is True
        assert args.max_attempts is None

    def test_command_is_required(self):
        with pytest.raises(SystemExit):
            manage_queue.build_parser().parse_args([])


class TestReportPlacement:
    def test_applied(self, sample_utc_now, capsys):
        job = make_job("j1", sample_utc_now)
        assert manage_queue.report_placement(RescheduleResult(ResultStatus.APPLIED, job=job)) == 0
        assert "Job j1 is queued" in capsys.readouterr().out

    def test_conflict_names_the_other_job(self, sample_utc_now, capsys):
        result = RescheduleResult(
            ResultStatus.CONFLICT,
            job=make_job("j1", sample_utc_now),
            conflict=make_job("j2", sample_utc_now + timedelta(hours=1), content="Other post"),
        )

        assert manage_queue.report_placement(result) == manage_queue.EXIT_CONFLICT
        out = capsys.readouterr().out
        assert "Slot taken by job j2" in out
        assert "Other post" in out

    def test_not_found_raises(self):
        with pytest.raises(JobNotFoundError, match="j9"):
            manage_queue.report_placement(RescheduleResult(ResultStatus.NOT_FOUND), "j9")


class TestRunCommand:
    @pytest.mark.asyncio
    async def test_enqueue_and_snapshot_in_memory(self, capsys):
        args = manage_queue.build_parser().parse_args(
            ["enqueue", "launch", "facebook", "2026-11-03T09:00:00Z", "--content", "We're live!"]
        )

        assert await manage_queue.run_command(args) == 0
        assert "is scheduled for 2026-11-03T09:00:00+00:00" in capsys.readouterr().out

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "argv",
        [["cancel", "j1"], ["retry", "j1"], ["move", "j1", "2026-11-04"], ["reschedule", "j1", "2026-11-03T10:00:00Z"]],
    )
    async def test_job_commands_refuse_memory_store(self, argv):
        args = manage_queue.build_parser().parse_args(argv)
        with pytest.raises(ConfigurationError, match="store_backend: supabase"):
            await manage_queue.run_command(args)

    @pytest.mark.asyncio
    async def test_snapshot_in_memory(self, capsys):
        args = manage_queue.build_parser().parse_args(["snapshot"])
        assert await manage_queue.run_command(args) == 0
        assert "scheduled: 0" in capsys.readouterr().out
