import functools
import logging
import time

from pod_test_observer.utils import configuration
from pod_test_observer.utils import pod_types


@functools.cache
def framework_logger() -> logging.Logger:
    """Get logger for the `framework.log` file.

    The file is configured by the `FRAMEWORK_LOG` env variable. It collects the outcomes of
    watched test pods for later reporting. When the variable is not set, the records are
    discarded.
    """

    class UTCFormatter(logging.Formatter):
        converter = time.gmtime  # type: ignore[assignment]

    handler: logging.Handler
    if configuration.FRAMEWORK_LOG:
        handler = logging.FileHandler(configuration.FRAMEWORK_LOG)
        handler.setFormatter(UTCFormatter("%(asctime)s %(levelname)s %(message)s"))
    else:
        handler = logging.NullHandler()

    logger = logging.getLogger("framework")
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)

    return logger


def record_verdict(*, watch_name: str, verdict: pod_types.Verdict) -> None:
    """Record the verdict of a watched test container.

    Passed tests are recorded as INFO, everything else as ERROR, so failures are easy to grep.
    """
    level = logging.INFO if verdict == pod_types.Verdict.PASSED else logging.ERROR
    framework_logger().log(level, f"verdict={verdict} watch={watch_name}")


def record_not_ready(*, selector: str, budget: pod_types.WaitBudget) -> None:
    """Record a pod that didn't become ready in time."""
    framework_logger().error(
        f"not_ready selector={selector} waited={budget.elapsed():.1f}s budget={budget.total}s"
    )
