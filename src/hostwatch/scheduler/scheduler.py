import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Awaitable, Callable, List, Optional, Set

from hostwatch.alert_manager.alert_handler import AlertDispatcher
from hostwatch.alert_manager.report_generator import generate_text_report
from hostwatch.baseline_engine.baseline_tracker import BaselineTracker
from hostwatch.detection_engine.suspicious_activity import SuspiciousActivityEvaluator
from hostwatch.detection_engine.threshold_evaluator import ThresholdEvaluator
from hostwatch.models import ChangeEvent, LoginEvent, Snapshot, Thresholds
from hostwatch.utils.config_loader import MonitoringSettings

FAST_CHECK_INTERVAL = 300


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


class PeriodicJob:
    """One named job; a tick that arrives while it is still running is dropped"""

    def __init__(self, name: str, interval: float, func: Callable[[], Awaitable[None]],
                 logger: logging.Logger):
        self.name = name
        self.interval = interval
        self.func = func
        self.logger = logger

        self.running = False
        self.runs = 0
        self.skipped = 0
        self.failures = 0
        self.last_run: Optional[datetime] = None
        self.last_error: Optional[str] = None

    @property
    def state(self) -> SchedulerState:
        return SchedulerState.RUNNING if self.running else SchedulerState.IDLE

    async def run_once(self) -> bool:
        """Run the job unless a previous run is in flight; errors are logged, not raised"""
        if self.running:
            self.skipped += 1
            self.logger.warning(f"Skipping {self.name}: previous run still in progress")
            return False

        self.running = True
        self.last_run = datetime.now()
        try:
            await self.func()
            self.runs += 1
            self.last_error = None
        except asyncio.CancelledError:
            self.logger.warning(f"{self.name} cancelled")
            raise
        except Exception as e:
            self.failures += 1
            self.last_error = str(e)
            self.logger.error(f"Error in {self.name}: {e}", exc_info=True)
        finally:
            self.running = False
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'state': self.state.value,
            'interval_seconds': self.interval,
            'runs': self.runs,
            'skipped': self.skipped,
            'failures': self.failures,
            'last_run': self.last_run.isoformat() if self.last_run else None,
            'last_error': self.last_error
        }


class Scheduler:
    """Drive the scheduled report, the fast check and the login watch.

    The slow (report) and fast (check) timers are independent and may
    overlap each other; each job on its own never overlaps. Login detection
    is decoupled from delivery through a queue: the watcher only puts
    LoginEvents on it, a consumer task turns them into alerts.
    """

    def __init__(self, snapshot_provider, tracker: BaselineTracker,
                 suspicious: SuspiciousActivityEvaluator, threshold: ThresholdEvaluator,
                 dispatcher: AlertDispatcher, thresholds: Thresholds = None,
                 settings: MonitoringSettings = None, login_source=None,
                 top_processes: int = 5, fast_interval: float = FAST_CHECK_INTERVAL):
        self.snapshot_provider = snapshot_provider
        self.tracker = tracker
        self.suspicious = suspicious
        self.threshold = threshold
        self.dispatcher = dispatcher
        self.thresholds = thresholds or Thresholds()
        self.settings = settings or MonitoringSettings()
        self.login_source = login_source
        self.top_processes = top_processes

        self.logger = self._setup_logger()

        self.report_job = PeriodicJob('scheduled report', self.settings.report_interval_seconds,
                                      self.run_scheduled_report, self.logger)
        self.fast_job = PeriodicJob('fast check', fast_interval, self.run_fast_check, self.logger)

        self.login_events: asyncio.Queue = asyncio.Queue()
        self.last_session_count: Optional[int] = None
        self.last_snapshot: Optional[Snapshot] = None
        self.started_at: Optional[datetime] = None

        self._shutdown = asyncio.Event()
        self._loops: List[asyncio.Task] = []
        self._in_flight: Set[asyncio.Task] = set()

    def _setup_logger(self):
        return logging.getLogger('Scheduler')

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> SchedulerState:
        if self._shutdown.is_set():
            return SchedulerState.SHUTTING_DOWN
        if self.report_job.running or self.fast_job.running:
            return SchedulerState.RUNNING
        return SchedulerState.IDLE

    def job_states(self) -> Dict[str, Dict[str, Any]]:
        return {
            'scheduled_report': self.report_job.to_dict(),
            'fast_check': self.fast_job.to_dict()
        }

    def request_shutdown(self):
        """Stop starting new cycles; run() then winds down"""
        if not self._shutdown.is_set():
            self.logger.info("Shutdown requested")
            self._shutdown.set()

    # =========================================================================
    # Cycles
    # =========================================================================

    def _baseline_changes(self, snapshot: Snapshot) -> List[ChangeEvent]:
        """Roll the baseline forward once; the first usable snapshot only establishes it"""
        if not self.tracker.initialized:
            self.tracker.initialize(snapshot)
            return []
        return self.tracker.update(snapshot)

    async def run_fast_check(self):
        """Suspicious-activity and threshold checks, one alert per category"""
        snapshot = await self.snapshot_provider.get_snapshot()
        self.last_snapshot = snapshot

        events = self._baseline_changes(snapshot)
        findings = self.suspicious.evaluate(snapshot) + self.threshold.evaluate(snapshot, self.thresholds)

        messages = self.dispatcher.dispatch(events, findings)
        if not messages:
            self.logger.debug("Fast check: nothing to report")
            return
        await self.dispatcher.deliver(messages)

    async def run_scheduled_report(self):
        """Full text report routed as a single message"""
        snapshot = await self.snapshot_provider.get_snapshot()
        self.last_snapshot = snapshot

        changes = self._baseline_changes(snapshot)
        suspicious = self.suspicious.evaluate(snapshot)

        report = generate_text_report(snapshot, suspicious, changes, self.top_processes)
        self.logger.info(f"Scheduled report generated ({len(report)} characters)")
        await self.dispatcher.deliver([self.dispatcher.report_message(report)])

    # =========================================================================
    # Login watch
    # =========================================================================

    async def poll_logins(self):
        """Compare the session count with the last poll; queue one event per increase.

        The new count is only committed once the increase has been turned
        into an event, so a failed lookup is retried on the next poll.
        """
        try:
            count = await asyncio.to_thread(self.login_source.get_current_session_count)
        except Exception as e:
            self.logger.warning(f"Session count unavailable: {e}")
            return

        previous = self.last_session_count
        if previous is None or count <= previous:
            self.last_session_count = count
            return

        try:
            session = await asyncio.to_thread(self.login_source.get_newest_session)
        except Exception as e:
            self.logger.warning(f"Could not read newest session: {e}")
            return
        if session is None:
            self.logger.warning("Session count increased but no session record was found")
            return

        self.logger.info(f"New login detected: {session.user} on {session.terminal} from {session.host}")
        self.login_events.put_nowait(LoginEvent(
            user=session.user,
            terminal=session.terminal,
            host=session.host,
            login_time=session.started or datetime.now(),
            type='login'
        ))
        self.last_session_count = count

    async def _watch_logins(self):
        try:
            self.last_session_count = await asyncio.to_thread(self.login_source.get_current_session_count)
        except Exception as e:
            self.logger.warning(f"Session count unavailable: {e}")

        while not await self._wait_or_shutdown(self.settings.login_watch_interval_seconds):
            await self.poll_logins()

    async def _consume_logins(self):
        while True:
            event = await self.login_events.get()
            self._track(self._deliver_login(event), name='login alert')
            self.login_events.task_done()

    async def _deliver_login(self, event: LoginEvent):
        try:
            await self.dispatcher.deliver([self.dispatcher.login_message(event)])
        except Exception as e:
            self.logger.error(f"Failed to deliver login alert: {e}")

    # =========================================================================
    # Timers
    # =========================================================================

    async def _wait_or_shutdown(self, timeout: float) -> bool:
        """Sleep for timeout seconds; True if shutdown was requested meanwhile"""
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        return self._shutdown.is_set()

    def _track(self, coro, name: str) -> asyncio.Task:
        """Run a coroutine as in-flight work that shutdown waits for"""
        task = asyncio.create_task(coro, name=name)
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    def _launch(self, job: PeriodicJob):
        if job.running:
            job.skipped += 1
            self.logger.warning(f"Skipping {job.name}: previous run still in progress")
            return
        self._track(job.run_once(), name=job.name)

    async def _timer(self, job: PeriodicJob):
        while not await self._wait_or_shutdown(job.interval):
            self._launch(job)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _establish_baseline(self):
        try:
            snapshot = await self.snapshot_provider.get_snapshot()
        except Exception as e:
            self.logger.error(f"Initial snapshot failed, baseline deferred to the first cycle: {e}",
                              exc_info=True)
            return
        self.last_snapshot = snapshot
        self.tracker.initialize(snapshot)

    async def run(self):
        """Establish the baseline, arm the timers and run until shutdown"""
        self.started_at = datetime.now()
        self.logger.info(f"Scheduler starting (report every {self.report_job.interval}s, "
                         f"fast check every {self.fast_job.interval}s)")

        try:
            await self._establish_baseline()

            if not self._shutdown.is_set():
                self._launch(self.report_job)

                self._loops = [
                    asyncio.create_task(self._timer(self.report_job), name='report timer'),
                    asyncio.create_task(self._timer(self.fast_job), name='fast timer'),
                ]
                if self.login_source is not None:
                    self._loops.append(asyncio.create_task(self._watch_logins(), name='login watch'))
                    self._loops.append(asyncio.create_task(self._consume_logins(), name='login alerts'))

            await self._shutdown.wait()
        finally:
            await self._stop()

    async def _stop(self):
        self._shutdown.set()

        for task in self._loops:
            task.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []

        if self._in_flight:
            grace = self.settings.shutdown_grace_seconds
            self.logger.info(f"Waiting up to {grace}s for {len(self._in_flight)} in-flight task(s)")
            _, pending = await asyncio.wait(set(self._in_flight), timeout=grace)
            for task in pending:
                self.logger.warning(f"Abandoning {task.get_name()} after grace period")
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        await self.dispatcher.router.close()
        self.logger.info("Scheduler stopped")
