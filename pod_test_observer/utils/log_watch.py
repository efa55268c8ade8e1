"""Detecting results of tests by watching logs of test pods.

The container under test is responsible for writing the success or failure token to its log,
based on its own heuristic. The watcher only scans the log for the tokens.
"""

import concurrent.futures
import logging
import threading
import typing as tp

from pod_test_observer.utils import configuration
from pod_test_observer.utils import framework_log
from pod_test_observer.utils import kube_api
from pod_test_observer.utils import pod_types

LOGGER = logging.getLogger(__name__)


class VerdictHandle:
    """One-shot delivery of the verdict of a single watch.

    Only the first emitted verdict is delivered, later ones are ignored.
    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._future: concurrent.futures.Future[pod_types.Verdict] = concurrent.futures.Future()
        self._lock = threading.Lock()
        self._closed = threading.Event()

    def emit(self, verdict: pod_types.Verdict) -> bool:
        """Deliver the `verdict`, unless some verdict was already delivered."""
        with self._lock:
            if self._future.done():
                return False
            self._future.set_result(verdict)
        framework_log.record_verdict(watch_name=self.name, verdict=verdict)
        return True

    def close(self) -> None:
        self._closed.set()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None) -> pod_types.Verdict:
        """Wait for the verdict."""
        return self._future.result(timeout=timeout)

    def wait_closed(self, timeout: float | None = None) -> bool:
        """Wait until the watch terminated and its log stream was released."""
        return self._closed.wait(timeout=timeout)


def _scan_log(
    *,
    log_stream: kube_api.LogStream,
    handle: VerdictHandle,
    budget: pod_types.WaitBudget,
    container_name: str,
    success_token: str,
    failure_token: str,
) -> None:
    """Read the log stream line by line until a conclusive verdict is emitted."""
    try:
        while True:
            # Make sure we don't wait too long for success/failure
            if budget.is_exhausted() and handle.emit(pod_types.Verdict.TIMED_OUT):
                LOGGER.error(f"[{container_name}] Timed out after {budget.total}s")

            try:
                raw_line = log_stream.readline()
            except Exception:
                LOGGER.exception(f"Error reading from {handle.name}")
                handle.emit(pod_types.Verdict.FAILED)
                return

            # If we detect EOF before success, this must have been a failure
            if not raw_line.endswith(b"\n"):
                LOGGER.error(f"EOF reading from {handle.name}")
                handle.emit(pod_types.Verdict.FAILED)
                return

            line = raw_line.decode("utf-8", errors="replace")

            if success_token in line:
                LOGGER.info(f"[{container_name}] Found {success_token}")
                handle.emit(pod_types.Verdict.PASSED)
                return

            if failure_token in line:
                LOGGER.info(f"[{container_name}] Found {failure_token}")
                handle.emit(pod_types.Verdict.FAILED)
                return
    finally:
        # No-op when a verdict was already delivered
        handle.emit(pod_types.Verdict.FAILED)
        try:
            log_stream.close()
        finally:
            handle.close()


def watch_for_result(
    cluster_api: kube_api.ClusterApi,
    *,
    namespace: str,
    pod_name: str,
    container_name: str,
    budget: float,
    success_token: str,
    failure_token: str,
    lookback: float = configuration.LOG_LOOKBACK_WINDOW,
) -> VerdictHandle:
    """Start watching the container log for the success or failure token.

    The log is followed starting `lookback` seconds in the past. Return immediately with a handle
    that delivers the verdict once it is known; the verdict is `TIMED_OUT` when no token was
    found within `budget` seconds.

    Raises:
        kube_api.StreamOpenError: The log stream couldn't be opened.
    """
    log_stream = cluster_api.stream_logs(
        namespace, pod_name, container_name, since=lookback, follow=True
    )

    handle = VerdictHandle(name=f"{namespace}/{pod_name} ({container_name})")
    wait_budget = pod_types.WaitBudget.start(budget)

    # A stream that stays silent would never get to the deadline check in the scanning loop
    watchdog = threading.Timer(budget, handle.emit, args=(pod_types.Verdict.TIMED_OUT,))
    watchdog.daemon = True
    watchdog.start()

    def _run() -> None:
        try:
            _scan_log(
                log_stream=log_stream,
                handle=handle,
                budget=wait_budget,
                container_name=container_name,
                success_token=success_token,
                failure_token=failure_token,
            )
        finally:
            watchdog.cancel()

    threading.Thread(target=_run, name=f"log-watch-{pod_name}", daemon=True).start()
    return handle


def collect_verdicts(handles: tp.Mapping[str, VerdictHandle]) -> dict[str, pod_types.Verdict]:
    """Wait for verdicts of all the watches."""
    verdicts = {}
    for key, handle in handles.items():
        verdict = handle.result()
        LOGGER.info(f"{handle.name or key}: {verdict}")
        verdicts[key] = verdict
    return verdicts


def get_pod_logs(
    cluster_api: kube_api.ClusterApi,
    *,
    namespace: str,
    pod_name: str,
    container_name: str,
    since: float,
) -> str:
    """Return logs written by the container in the last `since` seconds."""
    return cluster_api.fetch_logs(namespace, pod_name, container_name, since=since)
