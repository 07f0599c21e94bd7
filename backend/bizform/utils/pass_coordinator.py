"""
Detection pass coordination.
Allows one active detection pass per page context and coalesces triggers that
arrive while a pass is running into a single follow-up pass. The number of
tracked contexts is bounded; the least recently completed idle contexts are
evicted first.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from threading import Lock
from typing import Callable, Dict, Optional

from bizform.config import Config
from bizform.services.detection_pipeline.pipeline import DetectionReport, PageSnapshot

logger = logging.getLogger(__name__)


@dataclass
class SubmitResult:
    """Outcome of a scan trigger."""
    report: Optional[DetectionReport]
    deferred: bool = False


@dataclass
class _ContextState:
    active: bool = False
    pending: Optional[PageSnapshot] = None
    last_report: Optional[DetectionReport] = None
    last_completed: Optional[datetime] = None
    completion_order: int = 0
    passes_run: int = 0
    triggers_coalesced: int = 0


class PassCoordinator:
    """
    Debounces detection passes per page context.

    A trigger for a context with no active pass runs immediately on the
    caller's thread. A trigger arriving while a pass is active replaces any
    earlier pending snapshot (latest wins) and returns at once with
    ``deferred=True``; the thread running the active pass picks the pending
    snapshot up when it finishes. There is never more than one pass running
    for a context, and no queue of passes builds up.
    """

    def __init__(
        self,
        runner: Callable[[PageSnapshot], DetectionReport],
        max_contexts: Optional[int] = None
    ):
        """
        Args:
            runner: Runs one detection pass (normally DetectionPipeline.run)
            max_contexts: Idle contexts beyond this many are evicted, least
                recently completed first
        """
        self.runner = runner
        self.max_contexts = max_contexts if max_contexts is not None else Config.MAX_PAGE_CONTEXTS
        self.contexts: Dict[str, _ContextState] = {}
        self.lock = Lock()
        self.start_time = datetime.now()
        self.completions = 0

    def submit(self, context_id: str, snapshot: PageSnapshot) -> SubmitResult:
        """
        Trigger a detection pass for a page context.

        Returns:
            SubmitResult with the newest report. When deferred, the report is
            the last completed one (or None) and the new snapshot will be
            scanned by the pass already in progress.
        """
        with self.lock:
            state = self.contexts.get(context_id)
            if state is None:
                state = self.contexts[context_id] = _ContextState()
                self._evict_idle(keep=context_id)
            if state.active:
                if state.pending is not None:
                    state.triggers_coalesced += 1
                state.pending = snapshot
                logger.info(f"Pass active for context {context_id}; trigger deferred")
                return SubmitResult(report=state.last_report, deferred=True)
            state.active = True

        report = None
        try:
            while True:
                report = self.runner(snapshot)
                with self.lock:
                    state.last_report = report
                    state.last_completed = datetime.now()
                    state.passes_run += 1
                    self.completions += 1
                    state.completion_order = self.completions
                    if state.pending is None:
                        state.active = False
                        break
                    snapshot, state.pending = state.pending, None
                logger.info(f"Running coalesced pass for context {context_id}")
        except Exception:
            with self.lock:
                state.active = False
                state.pending = None
            raise

        return SubmitResult(report=report, deferred=False)

    def last_report(self, context_id: str) -> Optional[DetectionReport]:
        """Last completed report for a context, if any."""
        with self.lock:
            state = self.contexts.get(context_id)
            return state.last_report if state else None

    def is_active(self, context_id: str) -> bool:
        with self.lock:
            state = self.contexts.get(context_id)
            return bool(state and state.active)

    def get_stats(self, context_id: Optional[str] = None) -> Dict:
        """
        Get statistics for one context or all contexts.

        Args:
            context_id: Optional context. If None, returns combined stats.
        """
        with self.lock:
            if context_id:
                state = self.contexts.get(context_id) or _ContextState()
                return {
                    'context_id': context_id,
                    'active': state.active,
                    'pending': state.pending is not None,
                    'passes_run': state.passes_run,
                    'triggers_coalesced': state.triggers_coalesced,
                    'last_completed': state.last_completed.isoformat() if state.last_completed else None,
                }
            return {
                'contexts': len(self.contexts),
                'active_passes': sum(1 for s in self.contexts.values() if s.active),
                'passes_run': sum(s.passes_run for s in self.contexts.values()),
                'triggers_coalesced': sum(s.triggers_coalesced for s in self.contexts.values()),
                'session_duration': (datetime.now() - self.start_time).total_seconds()
            }

    def forget(self, context_id: str) -> bool:
        """
        Drop a closed page context and its last report.

        Returns:
            True if the context was dropped; False if it is unknown or a pass
            is still active for it
        """
        with self.lock:
            state = self.contexts.get(context_id)
            if state is None or state.active:
                return False
            del self.contexts[context_id]
            logger.info(f"Released context {context_id}")
            return True

    def _evict_idle(self, keep: str):
        # Caller holds the lock
        while len(self.contexts) > self.max_contexts:
            idle = [(cid, s) for cid, s in self.contexts.items() if cid != keep and not s.active]
            if not idle:
                break
            context_id, _ = min(idle, key=lambda item: item[1].completion_order)
            del self.contexts[context_id]
            logger.info(f"Evicted idle context {context_id} ({self.max_contexts} contexts tracked)")

    def reset(self):
        """Reset all context tracking (useful for testing)."""
        with self.lock:
            self.contexts.clear()
            self.start_time = datetime.now()
            logger.info("Pass coordinator reset")
