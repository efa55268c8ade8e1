import datetime
import threading
import typing as tp

import pytest

from pod_test_observer.utils import kube_api
from pod_test_observer.utils import pod_types

BASE_TIME = datetime.datetime(2024, 1, 1, tzinfo=datetime.UTC)


def _make_pod(
    name: str,
    *,
    created: int = 0,
    containers: tp.Iterable[tuple[str, str]] = (("main", "Running"),),
    namespace: str = "tests",
) -> pod_types.PodDescriptor:
    """Create a pod snapshot.

    `containers` are tuples of container name and either "Running", "Terminated", or a reason
    of the waiting state.
    """
    statuses = []
    for cname, state in containers:
        if state == "Running":
            statuses.append(
                pod_types.ContainerStatus(name=cname, phase=pod_types.ContainerPhase.RUNNING)
            )
        elif state == "Terminated":
            statuses.append(
                pod_types.ContainerStatus(name=cname, phase=pod_types.ContainerPhase.TERMINATED)
            )
        else:
            statuses.append(
                pod_types.ContainerStatus(
                    name=cname, phase=pod_types.ContainerPhase.WAITING, reason=state
                )
            )
    return pod_types.PodDescriptor(
        namespace=namespace,
        name=name,
        creation_timestamp=BASE_TIME + datetime.timedelta(seconds=created),
        container_statuses=tuple(statuses),
    )


class FakeLogStream:
    """Log stream returning scripted lines.

    An exception in `lines` is raised instead of returning a line. When the lines are exhausted,
    the stream either reports EOF or blocks until `unblock` is called.
    """

    def __init__(self, lines: tp.Iterable[bytes | Exception], *, block: bool = False) -> None:
        self.lines = list(lines)
        self.block = block
        self.closed = False
        self._unblocked = threading.Event()

    def readline(self) -> bytes:
        if self.lines:
            line = self.lines.pop(0)
            if isinstance(line, Exception):
                raise line
            return line
        if self.block:
            self._unblocked.wait()
        return b""

    def unblock(self) -> None:
        self._unblocked.set()

    def close(self) -> None:
        self.closed = True


class FakeClusterApi(kube_api.ClusterApi):
    """In-memory cluster.

    Successive calls return successive items of `listings` (per selector) and `snapshots`
    (per pod name); the last item is repeated once the others were consumed.
    """

    def __init__(self) -> None:
        self.listings: dict[str, list[list[pod_types.PodDescriptor]]] = {}
        self.snapshots: dict[str, list[pod_types.PodDescriptor]] = {}
        self.log_streams: dict[tuple[str, str], FakeLogStream] = {}
        self.logs: dict[tuple[str, str], str] = {}
        self.list_error: Exception | None = None
        self.stream_calls: list[dict] = []
        self._lock = threading.Lock()

    @staticmethod
    def _next(seq: list) -> tp.Any:
        return seq.pop(0) if len(seq) > 1 else seq[0]

    def list_pods(self, namespace: str, selector: str) -> list[pod_types.PodDescriptor]:
        if self.list_error is not None:
            raise self.list_error
        with self._lock:
            listing = self.listings.get(selector)
            return list(self._next(listing)) if listing else []

    def get_pod(self, namespace: str, name: str) -> pod_types.PodDescriptor:
        with self._lock:
            snapshots = self.snapshots.get(name)
            if not snapshots:
                msg = f"Pod '{namespace}/{name}' not found"
                raise kube_api.PodNotFoundError(msg)
            return self._next(snapshots)

    def stream_logs(
        self, namespace: str, name: str, container: str, *, since: float, follow: bool = True
    ) -> FakeLogStream:
        self.stream_calls.append(
            {"namespace": namespace, "name": name, "container": container, "since": since}
        )
        stream = self.log_streams.get((name, container))
        if stream is None:
            msg = f"Error in opening log stream of '{namespace}/{name}' ({container})"
            raise kube_api.StreamOpenError(msg)
        return stream

    def fetch_logs(self, namespace: str, name: str, container: str, *, since: float) -> str:
        try:
            return self.logs[(name, container)]
        except KeyError as exc:
            msg = f"Error in fetching logs of '{namespace}/{name}' ({container})"
            raise kube_api.StreamOpenError(msg) from exc


@pytest.fixture
def cluster_api() -> FakeClusterApi:
    return FakeClusterApi()


@pytest.fixture
def make_pod() -> tp.Callable[..., pod_types.PodDescriptor]:
    return _make_pod


@pytest.fixture
def add_log_stream(
    cluster_api: FakeClusterApi,
) -> tp.Generator[tp.Callable[..., FakeLogStream], None, None]:
    """Register log stream of a container; make sure no watcher thread stays blocked."""
    streams: list[FakeLogStream] = []

    def _add(
        pod_name: str,
        lines: tp.Iterable[bytes | Exception],
        *,
        container: str = "main",
        block: bool = False,
    ) -> FakeLogStream:
        stream = FakeLogStream(lines, block=block)
        cluster_api.log_streams[(pod_name, container)] = stream
        streams.append(stream)
        return stream

    yield _add

    for s in streams:
        s.unblock()
