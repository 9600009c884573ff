import logging
import time

STOPPED = 'stopped'
RUNNING = 'running'


class TickScheduler:
    """Fixed-interval clock source for one court.

    - start() and stop() are idempotent
    - Each start/stop bumps a generation; a worker only ticks while its
      generation is current, so a stopped or superseded worker exits on its
      next wake-up instead of touching the match
    - Without a spawn function no worker runs and ticks are driven by hand
    """

    def __init__(self, on_tick, interval: float = 1.0, spawn=None, sleep=None,
                 heartbeat_ticks: int = 0, name: str = '', logger=None):
        self.on_tick = on_tick
        self.interval = float(interval)
        self.heartbeat_ticks = int(heartbeat_ticks or 0)
        self.name = name
        self.logger = logger or logging.getLogger('matchsync')
        self.state = STOPPED
        self._spawn = spawn
        self._sleep = sleep or time.sleep
        self._generation = 0

    @property
    def is_running(self) -> bool:
        return self.state == RUNNING

    @property
    def generation(self) -> int:
        return self._generation

    def is_current(self, generation: int) -> bool:
        return self.state == RUNNING and generation == self._generation

    def start(self) -> bool:
        if self.state == RUNNING:
            return False
        self._generation += 1
        self.state = RUNNING
        self.logger.info(f"[timer-start] court={self.name} generation={self._generation} interval={self.interval}s")
        if self._spawn is not None:
            self._spawn(self._worker, self._generation)
        return True

    def stop(self) -> bool:
        if self.state == STOPPED:
            return False
        self._generation += 1
        self.state = STOPPED
        self.logger.info(f"[timer-stop] court={self.name} generation={self._generation}")
        return True

    def _worker(self, generation: int) -> None:
        ticks = 0
        while True:
            self._sleep(self.interval)
            if not self.is_current(generation):
                self.logger.info(f"[timer-abort] court={self.name} generation={generation} superseded by {self._generation}")
                return
            ticks += 1
            if self.heartbeat_ticks and ticks % self.heartbeat_ticks == 0:
                self.logger.info(f"[timer-heartbeat] court={self.name} generation={generation} ticks={ticks}")
            self.on_tick(generation)
