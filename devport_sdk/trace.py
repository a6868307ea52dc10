"""Wire trace logging.

Appends every inbound and outbound frame to a plain-text file so a
session can be replayed when debugging protocol problems. Tracing is
off unless ``DEVPORT_TRACE_LOG`` names a file.

Usage:
    from devport_sdk.trace import trace, trace_frame

    trace("recovery", "attempt 2 failed")
    trace_frame("<-", raw_frame)
"""

import os
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Optional


TRACE_ENV_VAR = "DEVPORT_TRACE_LOG"

# Frames longer than this are cut in the trace file.
MAX_TRACED_FRAME = 4000


def resolve_trace_path(*env_vars: str) -> Optional[str]:
    """First non-empty value among ``env_vars`` (default: DEVPORT_TRACE_LOG)."""
    for name in env_vars or (TRACE_ENV_VAR,):
        path = os.environ.get(name)
        if path:
            return path
    return None


def trace_write(
    component: str,
    msg: str,
    trace_path: Optional[str],
    *,
    include_traceback: bool = False,
) -> None:
    """Append ``[time] [component] msg`` to ``trace_path``.

    Does nothing when ``trace_path`` is empty. I/O errors are ignored so
    tracing can never break a session.

    Args:
        component: Short source tag, e.g. "wire" or "recovery".
        msg: Text to record.
        trace_path: Target file; parent directories are created.
        include_traceback: Also record the exception being handled.
    """
    if not trace_path:
        return

    stamp = datetime.now().strftime("%H:%M:%S.%f")[:-3]
    lines = [f"[{stamp}] [{component}] {msg}"]
    if include_traceback and sys.exc_info()[0] is not None:
        lines.append(f"[{stamp}] [{component}] Traceback:")
        lines.append(traceback.format_exc().rstrip())

    try:
        target = Path(trace_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("a", encoding="utf-8") as f:
            f.write("\n".join(lines) + "\n")
    except OSError:
        pass


def trace(component: str, msg: str, *, include_traceback: bool = False) -> None:
    """Write a message to the trace named by ``DEVPORT_TRACE_LOG``."""
    trace_write(component, msg, resolve_trace_path(), include_traceback=include_traceback)


def trace_frame(direction: str, frame: str) -> None:
    """Record one wire frame. ``direction`` is ``"->"`` or ``"<-"``."""
    path = resolve_trace_path()
    if not path:
        return
    if len(frame) > MAX_TRACED_FRAME:
        frame = frame[:MAX_TRACED_FRAME] + f"... ({len(frame)} chars)"
    trace_write("wire", f"{direction} {frame}", path)


__all__ = [
    "MAX_TRACED_FRAME",
    "TRACE_ENV_VAR",
    "resolve_trace_path",
    "trace",
    "trace_frame",
    "trace_write",
]
