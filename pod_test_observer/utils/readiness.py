"""Waiting for test pods to become ready."""

import concurrent.futures
import logging
import threading
import typing as tp

from pod_test_observer.utils import configuration
from pod_test_observer.utils import framework_log
from pod_test_observer.utils import kube_api
from pod_test_observer.utils import pod_selector
from pod_test_observer.utils import pod_types

LOGGER = logging.getLogger(__name__)


class DeadlineExceededError(Exception):
    pass


class WaitStoppedError(Exception):
    pass


class ReadinessCountdown:
    """Countdown of readiness events shared by several concurrent waits."""

    def __init__(self, count: int) -> None:
        if count < 0:
            msg = f"Invalid count '{count}': must be >= 0"
            raise ValueError(msg)
        self._count = count
        self._cond = threading.Condition()

    @property
    def count(self) -> int:
        with self._cond:
            return self._count

    def done(self) -> None:
        """Signal one completion."""
        with self._cond:
            if self._count <= 0:
                msg = "Countdown already reached zero"
                raise ValueError(msg)
            self._count -= 1
            if self._count == 0:
                self._cond.notify_all()

    def wait(self, timeout: float | None = None) -> bool:
        """Wait until all completions were signalled.

        Returns False if the `timeout` elapsed first.
        """
        with self._cond:
            return self._cond.wait_for(lambda: self._count == 0, timeout=timeout)


class ReadinessWaiter:
    """Wait for the canonical pod of a selector to get past its initialization."""

    def __init__(
        self,
        cluster_api: kube_api.ClusterApi,
        *,
        poll_interval: float = configuration.POD_POLL_INTERVAL,
        worth_waiting_for: frozenset[str] = configuration.WORTH_WAITING_FOR,
    ) -> None:
        self.cluster_api = cluster_api
        self.poll_interval = poll_interval
        self.worth_waiting_for = frozenset(worth_waiting_for)

    def is_initializing(self, pod: pod_types.PodDescriptor) -> bool:
        """Check if the pod still has a container in one of the transient waiting states."""
        # Container statuses are not reported until the pod is scheduled
        if not pod.container_statuses:
            return True
        return any(
            c.is_waiting and c.reason in self.worth_waiting_for for c in pod.container_statuses
        )

    def wait_ready(
        self,
        *,
        namespace: str,
        selector: str,
        budget: pod_types.WaitBudget,
        on_ready: tp.Callable[[], None] | None = None,
        stop_event: threading.Event | None = None,
    ) -> pod_types.PodDescriptor:
        """Wait for the canonical pod of the `selector` to be ready.

        The `on_ready` callback is called once, when the pod is found ready. Setting the
        `stop_event` ends the wait at the next poll.

        Raises:
            DeadlineExceededError: The pod didn't become ready within the `budget`.
            kube_api.PodNotFoundError: The selected pod disappeared before it could be inspected.
            kube_api.ClusterQueryError: The cluster API query failed.
            WaitStoppedError: The `stop_event` was set.
        """
        stop_event = stop_event or threading.Event()
        while True:
            if stop_event.is_set():
                msg = f"Wait for pod '{selector}' was stopped"
                raise WaitStoppedError(msg)

            if budget.is_exhausted():
                msg = (
                    f"Waited for pod '{selector}' to become ready for {budget.total}s; "
                    "didn't happen"
                )
                LOGGER.error(msg)
                framework_log.record_not_ready(selector=selector, budget=budget)
                raise DeadlineExceededError(msg)

            try:
                pod_name = pod_selector.select_canonical(
                    self.cluster_api, namespace=namespace, selector=selector
                ).name
            except kube_api.NoPodsFoundError:
                # Pod might not be up yet, try again
                LOGGER.debug(f"Pod with selector '{selector}' not found yet, waiting")
                stop_event.wait(self.poll_interval)
                continue

            pod = self.cluster_api.get_pod(namespace, pod_name)

            if self.is_initializing(pod):
                LOGGER.info(
                    f"Pod {pod.full_name} is still initializing; waiting {self.poll_interval}s "
                    f"({budget.elapsed():.1f}/{budget.total}s)"
                )
                stop_event.wait(self.poll_interval)
                continue

            LOGGER.info(f"Pod '{pod.full_name}' is ready!")
            if on_ready is not None:
                on_ready()
            return pod


def wait_all_ready(
    waiter: ReadinessWaiter,
    *,
    namespace: str,
    selectors: tp.Sequence[str],
    budget: pod_types.WaitBudget,
) -> list[pod_types.PodDescriptor]:
    """Wait concurrently for pods of all the `selectors` to be ready.

    Return the ready pods in the order of `selectors`. The first failure of any of the waits
    stops the other waits and is re-raised without waiting for them to finish.
    """
    countdown = ReadinessCountdown(len(selectors))
    if not selectors:
        return []

    stop_event = threading.Event()
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=len(selectors))
    futures = [
        executor.submit(
            waiter.wait_ready,
            namespace=namespace,
            selector=s,
            budget=budget,
            on_ready=countdown.done,
            stop_event=stop_event,
        )
        for s in selectors
    ]
    try:
        for f in concurrent.futures.as_completed(futures):
            f.result()
    except BaseException:
        stop_event.set()
        executor.shutdown(wait=False, cancel_futures=True)
        raise
    executor.shutdown(wait=True)

    countdown.wait()
    LOGGER.info(f"All {len(selectors)} pods are ready")
    return [f.result() for f in futures]
