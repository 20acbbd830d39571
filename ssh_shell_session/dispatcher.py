"""Worker and delivery contexts for SSH session operations."""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Optional, Set


class Dispatcher:
    """Runs protocol work on one ordered worker and hands results to callers.

    The worker is a single-thread pool, so items run one at a time in the
    order they were submitted. Results go through ``deliver``; by default
    that is a second single-thread pool, but a caller may pass its own
    marshalling function (for example ``loop.call_soon_threadsafe``).
    """

    def __init__(self, deliver: Optional[Callable[..., None]] = None,
                 on_worker_error: Optional[Callable[[BaseException], None]] = None):
        self.logger = logging.getLogger('ssh_shell_session.dispatcher')
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ssh_worker")
        self._delivery: Optional[ThreadPoolExecutor] = None
        if deliver is None:
            self._delivery = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ssh_delivery")
        self._deliver = deliver
        self._on_worker_error = on_worker_error
        self._timers: Set[threading.Timer] = set()
        self._timers_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def run(self, func: Callable, *args, **kwargs) -> Future:
        """Enqueue ``func`` on the worker."""
        return self._worker.submit(self._run_guarded, func, args, kwargs)

    def _run_guarded(self, func, args, kwargs):
        logger = self.logger.getChild('worker')
        try:
            return func(*args, **kwargs)
        except Exception as exc:
            logger.error(f"[WORKER_ERROR] {getattr(func, '__name__', func)} failed: {exc}", exc_info=True)
            if self._on_worker_error is not None:
                self._on_worker_error(exc)
            return None

    def deliver(self, func: Callable, *args) -> None:
        """Hand ``func(*args)`` to the delivery context."""
        if self._closed:
            self.logger.getChild('delivery').debug(
                f"[DELIVERY_DROPPED] {getattr(func, '__name__', func)} after shutdown"
            )
            return
        if self._delivery is not None:
            self._delivery.submit(self._deliver_guarded, func, args)
        else:
            self._deliver(self._deliver_guarded, func, args)

    def _deliver_guarded(self, func, args):
        try:
            func(*args)
        except Exception as exc:
            self.logger.getChild('delivery').error(
                f"[DELIVERY_ERROR] Callback {getattr(func, '__name__', func)} raised: {exc}", exc_info=True
            )

    def deliver_after(self, delay: float, func: Callable, *args) -> None:
        """Hand ``func(*args)`` to the delivery context after ``delay`` seconds.

        The wait happens on a timer thread, never on the worker.
        """
        if delay <= 0:
            self.deliver(func, *args)
            return

        timer = None

        def fire():
            self.deliver(func, *args)
            with self._timers_lock:
                self._timers.discard(timer)

        timer = threading.Timer(delay, fire)
        timer.daemon = True
        with self._timers_lock:
            self._timers.add(timer)
        timer.start()

    def flush(self, timeout: Optional[float] = None) -> None:
        """Wait until everything enqueued so far has run and been delivered.

        Pending delayed deliveries are waited for too. Only meaningful with
        the default delivery context.
        """
        self._worker.submit(lambda: None).result(timeout)
        with self._timers_lock:
            timers = list(self._timers)
        for timer in timers:
            timer.join(timeout)
        if self._delivery is not None:
            self._delivery.submit(lambda: None).result(timeout)

    def shutdown(self, wait: bool = True) -> None:
        logger = self.logger.getChild('shutdown')
        logger.info("Shutting down worker and delivery contexts")
        self._worker.shutdown(wait=wait)
        self._closed = True
        with self._timers_lock:
            timers = list(self._timers)
            self._timers.clear()
        for timer in timers:
            timer.cancel()
        if self._delivery is not None:
            self._delivery.shutdown(wait=wait)
