"""Engine epoch ticker for wall-clock interruption.

Each store gets an epoch deadline measured in ticks. A single daemon thread
per engine advances the epoch, so a guest stuck in a loop traps once its
deadline passes, without any per-invocation thread.
"""

import logging
import math
import threading

import wasmtime

logger = logging.getLogger(__name__)


class EpochTicker:
    """Advance an engine's epoch at a fixed interval on a daemon thread.

    Example:
        >>> ticker = EpochTicker(engine, tick_ms=10)
        >>> ticker.start()
        >>> store.set_epoch_deadline(ticker.ticks_for(0.5))
    """

    def __init__(self, engine: wasmtime.Engine, tick_ms: int = 10):
        self.engine = engine
        self.tick_ms = tick_ms
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="skillbox-epoch-ticker", daemon=True
        )
        self._thread.start()
        logger.debug(f"Epoch ticker started ({self.tick_ms} ms)")

    def stop(self, timeout: float = 1.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def ticks_for(self, seconds: float) -> int:
        """Epoch deadline covering a remaining budget, at least one tick."""
        return max(1, math.ceil(seconds * 1000 / self.tick_ms))

    def _run(self) -> None:
        interval = self.tick_ms / 1000
        while not self._stop.wait(interval):
            self.engine.increment_epoch()
