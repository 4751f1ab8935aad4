"""Tests for the sync status state machine."""

import pytest

from statesync.status import SyncStatusReporter
from statesync.types import SyncStatus


@pytest.fixture
def reporter(scheduler):
    return SyncStatusReporter(scheduler, success_revert_delay=3.0)


class TestSyncStatusReporter:
    def test_starts_ready(self, reporter):
        assert reporter.status is SyncStatus.READY

    def test_success_reverts_to_ready(self, reporter, scheduler):
        reporter.report(SyncStatus.PENDING)
        reporter.report(SyncStatus.SUCCESS, "push")

        assert reporter.status is SyncStatus.SUCCESS
        scheduler.advance(2.5)
        assert reporter.status is SyncStatus.SUCCESS
        scheduler.advance(0.5)
        assert reporter.status is SyncStatus.READY

    def test_failure_is_sticky(self, reporter, scheduler):
        reporter.report(SyncStatus.FAILURE, "connection refused")

        scheduler.advance(60)

        assert reporter.status is SyncStatus.FAILURE
        assert reporter.detail == "connection refused"

    def test_new_operation_cancels_pending_revert(self, reporter, scheduler):
        reporter.report(SyncStatus.SUCCESS)
        scheduler.advance(1)
        reporter.report(SyncStatus.FAILURE, "boom")

        scheduler.advance(5)

        assert reporter.status is SyncStatus.FAILURE

    def test_subscribers_see_every_transition(self, reporter, scheduler):
        seen = []
        reporter.subscribe(lambda status, detail: seen.append(status))

        reporter.report(SyncStatus.PENDING)
        reporter.report(SyncStatus.SUCCESS)
        scheduler.advance(3)

        assert seen == [SyncStatus.PENDING, SyncStatus.SUCCESS, SyncStatus.READY]

    def test_failing_subscriber_does_not_block_others(self, reporter):
        seen = []

        def broken(status, detail):
            raise RuntimeError("render failed")

        reporter.subscribe(broken)
        reporter.subscribe(lambda status, detail: seen.append(status))

        reporter.report(SyncStatus.PENDING)

        assert seen == [SyncStatus.PENDING]

    def test_unsubscribe(self, reporter):
        seen = []
        callback = lambda status, detail: seen.append(status)  # noqa: E731
        reporter.subscribe(callback)
        reporter.unsubscribe(callback)

        reporter.report(SyncStatus.PENDING)

        assert seen == []

    def test_accepts_plain_strings(self, reporter):
        reporter.report("pending")

        assert reporter.status is SyncStatus.PENDING
