"""Test pods observer configuration."""

import os
import pathlib as pl

# Seconds to sleep between readiness checks of a pod
POD_POLL_INTERVAL = float(os.environ.get("POD_POLL_INTERVAL") or 5)
if POD_POLL_INTERVAL <= 0:
    msg = f"Invalid POD_POLL_INTERVAL '{POD_POLL_INTERVAL}': must be > 0"
    raise RuntimeError(msg)

# Seconds of historical log replayed before live tailing of the log starts
LOG_LOOKBACK_WINDOW = float(os.environ.get("LOG_LOOKBACK_WINDOW") or 5)
if LOG_LOOKBACK_WINDOW < 0:
    msg = f"Invalid LOG_LOOKBACK_WINDOW '{LOG_LOOKBACK_WINDOW}': must be >= 0"
    raise RuntimeError(msg)

# We are going to wait for the pod if one of its containers is waiting for one of these reasons.
# See kubelet `kubelet_test.go`, ContainerCreating / PodInitializing are expected during startup.
WORTH_WAITING_FOR = frozenset({"ContainerCreating", "PodInitializing"})

# Resolve FRAMEWORK_LOG
FRAMEWORK_LOG: str | pl.Path = os.environ.get("FRAMEWORK_LOG") or ""
if FRAMEWORK_LOG:
    FRAMEWORK_LOG = pl.Path(FRAMEWORK_LOG).expanduser().resolve()
