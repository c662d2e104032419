"""Progress events emitted by long-running operations."""

import inspect
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from pydantic import BaseModel


class ProgressStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ProgressEvent(BaseModel):
    stage: str
    completed: int = 0
    total: int = 0
    label: str = ""
    status: ProgressStatus = ProgressStatus.RUNNING

    @property
    def is_terminal(self) -> bool:
        return self.status is not ProgressStatus.RUNNING


# A sink may be a plain callable or a coroutine function.
ProgressSink = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


async def emit(sink: Optional[ProgressSink], stage: str, completed: int = 0, total: int = 0,
               label: str = "", status: ProgressStatus = ProgressStatus.RUNNING) -> None:
    """Send one event to the sink, if any."""
    if sink is None:
        return
    result = sink(ProgressEvent(stage=stage, completed=completed, total=total, label=label, status=status))
    if inspect.isawaitable(result):
        await result


async def emit_terminal(sink: Optional[ProgressSink], stage: str, ok: bool, label: str = "",
                        completed: int = 0, total: int = 0) -> None:
    """Send the single closing record of a logical operation."""
    status = ProgressStatus.SUCCEEDED if ok else ProgressStatus.FAILED
    await emit(sink, stage, completed, total, label, status)
