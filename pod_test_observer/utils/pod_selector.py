"""Selection of the canonical pod for a label selector."""

import logging

from pod_test_observer.utils import kube_api
from pod_test_observer.utils import pod_types

LOGGER = logging.getLogger(__name__)


def select_canonical(
    cluster_api: kube_api.ClusterApi, *, namespace: str, selector: str
) -> pod_types.PodDescriptor:
    """Return the most recently created pod matching the `selector`.

    Pods of a previous generation can linger (e.g. after a rolling restart), so the newest pod
    is preferred. Pods with equal creation timestamps keep the order returned by the API.
    """
    pods = cluster_api.list_pods(namespace, selector)
    if not pods:
        msg = f"Zero pods found for selector '{selector}' in namespace '{namespace}'"
        raise kube_api.NoPodsFoundError(msg)

    # `sorted` is stable also with `reverse=True`
    return sorted(pods, key=lambda p: p.creation_timestamp, reverse=True)[0]
