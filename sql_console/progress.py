from enum import Enum
from typing import Callable, List, Optional


ProgressListener = Callable[[int], None]


class UploadPhase(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    DONE = "done"


def to_percent(sent: int, total: int) -> int:
    """Integer percent of bytes sent, rounded half up."""
    if total <= 0:
        return 100
    return min(100, int(sent * 100 / total + 0.5))


class ProgressChannel:
    """Stream of upload percentages that listeners subscribe to.

    Values only move forward: a publish lower than or equal to the last
    published percentage is dropped, so every listener sees a strictly
    increasing sequence within 0..100.
    """

    def __init__(self):
        self._listeners: List[ProgressListener] = []
        self.events: List[int] = []
        self.finished = False

    def subscribe(self, listener: ProgressListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def last(self) -> Optional[int]:
        return self.events[-1] if self.events else None

    @property
    def phase(self) -> UploadPhase:
        if self.finished:
            return UploadPhase.DONE
        if self.last is None:
            return UploadPhase.IDLE
        # Every byte sent but no acknowledgment yet: the service is ingesting.
        if self.last >= 100:
            return UploadPhase.PROCESSING
        return UploadPhase.UPLOADING

    def publish(self, percent: int) -> None:
        percent = max(0, min(100, int(percent)))
        if self.last is not None and percent <= self.last:
            return
        self.events.append(percent)
        for listener in list(self._listeners):
            listener(percent)

    def publish_bytes(self, sent: int, total: int) -> None:
        self.publish(to_percent(sent, total))

    def finish(self) -> None:
        self.finished = True

    def reset(self) -> None:
        """Forget published values; listeners stay subscribed."""
        self.events = []
        self.finished = False
