"""
Tests for detection pass coordination.

Run with: pytest tests/test_pass_coordinator.py -v
"""

import threading

import pytest

from bizform.services.detection_pipeline import PageSnapshot
from bizform.utils.pass_coordinator import PassCoordinator

WAIT = 5.0


def _snapshot(address):
    return PageSnapshot(tree={'tag': 'body'}, address=address)


class BlockingRunner:
    """Runner that holds the pass for 'first' until released."""

    def __init__(self):
        self.calls = []
        self.started = threading.Event()
        self.release = threading.Event()

    def __call__(self, snapshot):
        self.calls.append(snapshot.address)
        if snapshot.address == 'first':
            self.started.set()
            self.release.wait(WAIT)
        return f"report:{snapshot.address}"


@pytest.fixture
def runner():
    return BlockingRunner()


@pytest.fixture
def coordinator(runner):
    return PassCoordinator(runner)


def _start_blocked_pass(coordinator, runner, context_id='tab-1'):
    results = {}

    def target():
        results['first'] = coordinator.submit(context_id, _snapshot('first'))

    thread = threading.Thread(target=target)
    thread.start()
    assert runner.started.wait(WAIT)
    return thread, results


# ============================================================================
# Coalescing
# ============================================================================

class TestCoalescing:
    def test_idle_context_runs_immediately(self, coordinator, runner):
        result = coordinator.submit('tab-1', _snapshot('second'))
        assert not result.deferred
        assert result.report == 'report:second'
        assert coordinator.last_report('tab-1') == 'report:second'
        assert not coordinator.is_active('tab-1')

    def test_latest_pending_snapshot_wins(self, coordinator, runner):
        thread, results = _start_blocked_pass(coordinator, runner)

        second = coordinator.submit('tab-1', _snapshot('second'))
        third = coordinator.submit('tab-1', _snapshot('third'))
        assert second.deferred and third.deferred
        assert second.report is None
        assert coordinator.is_active('tab-1')

        runner.release.set()
        thread.join(WAIT)

        # The active pass picks up only the newest snapshot
        assert runner.calls == ['first', 'third']
        assert not results['first'].deferred
        assert results['first'].report == 'report:third'

        stats = coordinator.get_stats('tab-1')
        assert stats['passes_run'] == 2
        assert stats['triggers_coalesced'] == 1
        assert stats['active'] is False
        assert stats['pending'] is False

    def test_deferred_trigger_returns_last_completed_report(self, coordinator, runner):
        coordinator.submit('tab-1', _snapshot('warmup'))
        thread, _ = _start_blocked_pass(coordinator, runner)

        deferred = coordinator.submit('tab-1', _snapshot('second'))
        assert deferred.deferred
        assert deferred.report == 'report:warmup'

        runner.release.set()
        thread.join(WAIT)
        assert coordinator.last_report('tab-1') == 'report:second'

    def test_contexts_are_independent(self, coordinator, runner):
        thread, _ = _start_blocked_pass(coordinator, runner)

        other = coordinator.submit('tab-2', _snapshot('other'))
        assert not other.deferred
        assert other.report == 'report:other'

        runner.release.set()
        thread.join(WAIT)
        assert coordinator.get_stats()['passes_run'] == 2


# ============================================================================
# Failures and bookkeeping
# ============================================================================

class TestBookkeeping:
    def test_runner_failure_releases_the_context(self):
        outcomes = iter([RuntimeError('boom'), 'report:ok'])

        def flaky(snapshot):
            outcome = next(outcomes)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        coordinator = PassCoordinator(flaky)
        with pytest.raises(RuntimeError):
            coordinator.submit('tab-1', _snapshot('a'))
        assert not coordinator.is_active('tab-1')
        assert coordinator.submit('tab-1', _snapshot('b')).report == 'report:ok'

    def test_combined_stats(self, coordinator):
        coordinator.submit('tab-1', _snapshot('a'))
        coordinator.submit('tab-2', _snapshot('b'))
        stats = coordinator.get_stats()
        assert stats['contexts'] == 2
        assert stats['active_passes'] == 0
        assert stats['passes_run'] == 2
        assert stats['session_duration'] >= 0

    def test_unknown_context_stats(self, coordinator):
        stats = coordinator.get_stats('nope')
        assert stats['passes_run'] == 0
        assert stats['last_completed'] is None

    def test_forget_ignores_active_context(self, coordinator, runner):
        thread, _ = _start_blocked_pass(coordinator, runner)
        coordinator.forget('tab-1')
        assert coordinator.is_active('tab-1')

        runner.release.set()
        thread.join(WAIT)
        coordinator.forget('tab-1')
        assert coordinator.last_report('tab-1') is None

    def test_forget_reports_whether_context_was_dropped(self, coordinator):
        coordinator.submit('tab-1', _snapshot('a'))
        assert coordinator.forget('tab-1') is True
        assert coordinator.forget('tab-1') is False
        assert coordinator.get_stats()['contexts'] == 0

    def test_reset(self, coordinator):
        coordinator.submit('tab-1', _snapshot('a'))
        coordinator.reset()
        assert coordinator.get_stats()['contexts'] == 0


# ============================================================================
# Context limit
# ============================================================================

class TestContextLimit:
    def test_least_recently_completed_context_is_evicted(self):
        coordinator = PassCoordinator(lambda snapshot: f"report:{snapshot.address}", max_contexts=2)
        coordinator.submit('tab-1', _snapshot('a'))
        coordinator.submit('tab-2', _snapshot('b'))
        coordinator.submit('tab-1', _snapshot('c'))
        coordinator.submit('tab-3', _snapshot('d'))

        assert coordinator.get_stats()['contexts'] == 2
        assert coordinator.last_report('tab-2') is None
        assert coordinator.last_report('tab-1') == 'report:c'
        assert coordinator.last_report('tab-3') == 'report:d'

    def test_many_pages_stay_within_the_limit(self):
        coordinator = PassCoordinator(lambda snapshot: 'report', max_contexts=5)
        for i in range(50):
            coordinator.submit(f'tab-{i}', _snapshot(str(i)))
        assert coordinator.get_stats()['contexts'] == 5
        assert coordinator.get_stats()['passes_run'] == 5
        assert coordinator.last_report('tab-49') == 'report'

    def test_active_context_is_never_evicted(self, runner):
        coordinator = PassCoordinator(runner, max_contexts=1)
        thread, results = _start_blocked_pass(coordinator, runner)

        coordinator.submit('tab-2', _snapshot('other'))
        assert coordinator.is_active('tab-1')

        runner.release.set()
        thread.join(WAIT)
        assert results['first'].report == 'report:first'
        assert coordinator.last_report('tab-1') == 'report:first'
