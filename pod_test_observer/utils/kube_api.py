"""Access to the cluster API used for observing test pods.

The rest of the framework works only with the `ClusterApi` interface, so it can be backed by
the Kubernetes API (`KubeClusterApi`) or by an in-memory implementation in tests.
"""

import datetime
import logging
import math
import typing as tp

from kubernetes import client as k8s
from kubernetes import config as k8s_config
from kubernetes.client import exceptions as k8s_exceptions
from urllib3 import exceptions as urllib3_exceptions

from pod_test_observer.utils import pod_types

LOGGER = logging.getLogger(__name__)

_EPOCH = datetime.datetime.fromtimestamp(0, tz=datetime.UTC)


class ClusterApiError(Exception):
    pass


class ClusterQueryError(ClusterApiError):
    pass


class NoPodsFoundError(ClusterApiError):
    pass


class PodNotFoundError(ClusterApiError):
    pass


class StreamOpenError(ClusterApiError):
    pass


class LogStream(tp.Protocol):
    def readline(self) -> bytes: ...

    def close(self) -> None: ...


class ClusterApi:
    """Operations on the cluster the observer needs."""

    def list_pods(self, namespace: str, selector: str) -> list[pod_types.PodDescriptor]:
        raise NotImplementedError

    def get_pod(self, namespace: str, name: str) -> pod_types.PodDescriptor:
        raise NotImplementedError

    def stream_logs(
        self, namespace: str, name: str, container: str, *, since: float, follow: bool = True
    ) -> LogStream:
        raise NotImplementedError

    def fetch_logs(self, namespace: str, name: str, container: str, *, since: float) -> str:
        raise NotImplementedError

    def delete_resource(self, kind: str, name: str) -> None:
        raise NotImplementedError


def _since_seconds(since: float) -> int:
    # The API accepts only positive whole seconds
    return max(1, math.ceil(since))


def _container_status_from_k8s(status: tp.Any) -> pod_types.ContainerStatus:
    state = status.state
    if state is not None and state.waiting is not None:
        return pod_types.ContainerStatus(
            name=status.name,
            phase=pod_types.ContainerPhase.WAITING,
            reason=state.waiting.reason or "",
        )
    if state is not None and state.terminated is not None:
        return pod_types.ContainerStatus(
            name=status.name,
            phase=pod_types.ContainerPhase.TERMINATED,
            reason=state.terminated.reason or "",
        )
    return pod_types.ContainerStatus(name=status.name, phase=pod_types.ContainerPhase.RUNNING)


def pod_from_k8s(pod: k8s.V1Pod) -> pod_types.PodDescriptor:
    """Convert pod record returned by Kubernetes API to `PodDescriptor`."""
    container_statuses = (pod.status and pod.status.container_statuses) or []
    return pod_types.PodDescriptor(
        namespace=pod.metadata.namespace or "",
        name=pod.metadata.name,
        creation_timestamp=pod.metadata.creation_timestamp or _EPOCH,
        container_statuses=tuple(_container_status_from_k8s(s) for s in container_statuses),
    )


class KubeClusterApi(ClusterApi):
    """`ClusterApi` backed by the Kubernetes API."""

    def __init__(
        self,
        core_api: k8s.CoreV1Api,
        admission_api: k8s.AdmissionregistrationV1Api | None = None,
    ) -> None:
        self.core_api = core_api
        self.admission_api = admission_api or k8s.AdmissionregistrationV1Api(core_api.api_client)

    @classmethod
    def from_config(cls) -> "KubeClusterApi":
        """Create the API using kubeconfig, or in-cluster config when running inside a pod."""
        k8s_config.load_config()
        return cls(core_api=k8s.CoreV1Api())

    def list_pods(self, namespace: str, selector: str) -> list[pod_types.PodDescriptor]:
        try:
            pod_list = self.core_api.list_namespaced_pod(namespace, label_selector=selector)
        except k8s_exceptions.ApiException as exc:
            msg = f"Failed to list pods with selector '{selector}' in namespace '{namespace}'"
            raise ClusterQueryError(msg) from exc
        return [pod_from_k8s(p) for p in pod_list.items]

    def get_pod(self, namespace: str, name: str) -> pod_types.PodDescriptor:
        try:
            pod = self.core_api.read_namespaced_pod(name, namespace)
        except k8s_exceptions.ApiException as exc:
            if exc.status == 404:
                msg = f"Pod '{namespace}/{name}' not found"
                raise PodNotFoundError(msg) from exc
            msg = f"Failed to get pod '{namespace}/{name}'"
            raise ClusterQueryError(msg) from exc
        return pod_from_k8s(pod)

    def stream_logs(
        self, namespace: str, name: str, container: str, *, since: float, follow: bool = True
    ) -> LogStream:
        try:
            response = self.core_api.read_namespaced_pod_log(
                name,
                namespace,
                container=container,
                follow=follow,
                since_seconds=_since_seconds(since),
                _preload_content=False,
            )
        except k8s_exceptions.ApiException as exc:
            msg = f"Error in opening log stream of '{namespace}/{name}' ({container})"
            raise StreamOpenError(msg) from exc
        return tp.cast(LogStream, response)

    def fetch_logs(self, namespace: str, name: str, container: str, *, since: float) -> str:
        try:
            logs = self.core_api.read_namespaced_pod_log(
                name,
                namespace,
                container=container,
                follow=False,
                since_seconds=_since_seconds(since),
            )
        except k8s_exceptions.ApiException as exc:
            msg = f"Error in fetching logs of '{namespace}/{name}' ({container})"
            raise StreamOpenError(msg) from exc
        except (urllib3_exceptions.HTTPError, OSError) as exc:
            # The whole log body is read by the call, so reading errors surface here too
            msg = f"Error in reading logs of '{namespace}/{name}' ({container})"
            raise StreamOpenError(msg) from exc
        return str(logs or "")

    def delete_resource(self, kind: str, name: str) -> None:
        deleters: dict[str, tp.Callable[..., tp.Any]] = {
            "namespace": self.core_api.delete_namespace,
            "mutatingwebhookconfiguration": (
                self.admission_api.delete_mutating_webhook_configuration
            ),
        }
        deleter = deleters.get(kind.lower())
        if deleter is None:
            msg = f"Unsupported resource kind: {kind}"
            raise ValueError(msg)

        try:
            deleter(name, grace_period_seconds=0)
        except k8s_exceptions.ApiException as exc:
            msg = f"Failed to delete {kind} '{name}'"
            raise ClusterQueryError(msg) from exc
        LOGGER.info(f"Deleted {kind}: {name}")
