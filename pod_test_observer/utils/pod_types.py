"""Types describing observed test pods and the outcome of watching them."""

import dataclasses
import datetime
import enum
import time


class ContainerPhase(enum.StrEnum):
    WAITING = "waiting"
    RUNNING = "running"
    TERMINATED = "terminated"


class Verdict(enum.StrEnum):
    PASSED = "passed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclasses.dataclass(frozen=True)
class ContainerStatus:
    name: str
    phase: ContainerPhase
    # Only meaningful for the `WAITING` phase
    reason: str = ""

    @property
    def is_waiting(self) -> bool:
        return self.phase == ContainerPhase.WAITING


@dataclasses.dataclass(frozen=True)
class PodDescriptor:
    """Snapshot of a pod, fetched on demand and never reused across polls."""

    namespace: str
    name: str
    creation_timestamp: datetime.datetime
    container_statuses: tuple[ContainerStatus, ...] = ()

    @property
    def full_name(self) -> str:
        return f"{self.namespace}/{self.name}"


@dataclasses.dataclass(frozen=True)
class WaitBudget:
    """Deadline window shared by all the retries of a single wait operation.

    The remaining time is recomputed on every call from the monotonic clock, the window is never
    reset.
    """

    started_at: float
    total: float

    @classmethod
    def start(cls, total: float) -> "WaitBudget":
        return cls(started_at=time.monotonic(), total=total)

    def elapsed(self) -> float:
        return time.monotonic() - self.started_at

    def remaining(self) -> float:
        return max(0.0, self.total - self.elapsed())

    def is_exhausted(self) -> bool:
        return self.elapsed() >= self.total
