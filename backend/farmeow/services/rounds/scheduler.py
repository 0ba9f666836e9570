import threading
from typing import Optional

from farmeow import socketio


class RoundPoller:
    """Background loop that asks the round controller to check the contract.

    One poller per app. A failed check is logged and the loop keeps going;
    only ``stop()`` ends it.
    """

    def __init__(self, app, controller, interval: int = 60, heartbeat: int = 0):
        self.app = app
        self.controller = controller
        self.interval = max(1, int(interval))
        self.heartbeat = max(0, int(heartbeat))
        self._stop = threading.Event()
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._stop.is_set()

    def start(self) -> None:
        if self.running:
            self.app.logger.info("[poller-skip] already started")
            return
        # a fresh event per run; a loop still winding down keeps its own, already set
        self._stop = threading.Event()
        self._task = socketio.start_background_task(self._run, self._stop)
        self.app.logger.info(f"[poller-start] interval={self.interval}s")

    def stop(self) -> None:
        self._stop.set()
        self._task = None
        self.app.logger.info("[poller-stop]")

    def tick(self) -> Optional[str]:
        try:
            outcome = self.controller.check_round()
        except Exception:
            self.app.logger.exception("[poller-error] round check raised")
            return None
        if outcome not in ('open', 'skipped'):
            self.app.logger.info(f"[poller-tick] outcome={outcome}")
        return outcome

    def _run(self, stop: Optional[threading.Event] = None) -> None:
        stop = stop or self._stop
        while not stop.is_set():
            self.tick()
            self._sleep(stop)

    def _sleep(self, stop: threading.Event) -> None:
        if not self.heartbeat:
            stop.wait(self.interval)
            return
        slept = 0
        while slept < self.interval and not stop.is_set():
            step = min(self.heartbeat, self.interval - slept)
            stop.wait(step)
            slept += step
            self.app.logger.info(f"[poller-heartbeat] next_check_in={max(0, self.interval - slept)}s")


def start_round_poller(app) -> Optional[RoundPoller]:
    """Start the app's poller unless running under tests.

    Tests opt in with ENABLE_SCHEDULER_IN_TESTS.
    """
    if app.config.get('TESTING') and not app.config.get('ENABLE_SCHEDULER_IN_TESTS'):
        return None
    poller = app.extensions.get('round_poller')
    if poller is None:
        poller = RoundPoller(
            app,
            app.extensions['round_controller'],
            interval=int(app.config.get('ROUND_POLL_INTERVAL_SEC', 60)),
            heartbeat=int(app.config.get('TIMER_HEARTBEAT_SEC', 0)),
        )
        app.extensions['round_poller'] = poller
    poller.start()
    return poller
