"""User facing narrative of a bridge transfer.

The orchestrator appends an entry for every step and updates the last
entry when a step finishes. Entries may carry a link, e.g. to a block
explorer or to the manual mint view.

The log may be shared by parallel transfers and outlive them. Each
session gets a :py:class:`ActionLogWriter` bound to a generation number.
After :py:meth:`ActionLog.reset` bumps the generation, writes from
older writers are dropped, so a stale transfer thread cannot clobber
the entries of a newer session.
"""

import datetime
import enum
import threading
import time
from dataclasses import dataclass, replace


class ActionStatus(enum.Enum):
    """Status icon of an entry."""

    pending = "pending"
    success = "success"
    warning = "warning"
    error = "error"


@dataclass(slots=True, frozen=True)
class ActionLogEntry:
    """One line of the action log."""

    #: Human readable message
    message: str

    #: Entry status
    status: ActionStatus

    #: When the entry was created
    timestamp: datetime.datetime

    #: Optional link, e.g. explorer or recovery URL
    link: str | None = None

    #: Link label
    link_text: str | None = None

    #: Monotonic clock when the step started, to compute :py:attr:`duration`
    started_at: float | None = None

    #: Seconds the step took, set when it leaves ``pending``
    duration: float | None = None


def format_duration(seconds: float) -> str:
    """Format a step duration like ``"850ms"``, ``"4.2s"`` or ``"2m 5s"``."""
    if seconds < 1:
        return f"{int(seconds * 1000)}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs}s"


class ActionLog:
    """Thread safe append and update-last sequence of :py:class:`ActionLogEntry`."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: list[ActionLogEntry] = []
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def writer(self) -> "ActionLogWriter":
        """Writer bound to the current generation."""
        return ActionLogWriter(self, self._generation)

    def reset(self) -> int:
        """Clear the log and start a new generation.

        :return:
            New generation number
        """
        with self._lock:
            self._entries = []
            self._generation += 1
            return self._generation

    def entries(self) -> list[ActionLogEntry]:
        """Snapshot of the entries."""
        with self._lock:
            return list(self._entries)

    def append(self, entry: ActionLogEntry, generation: int | None = None) -> bool:
        """Append an entry.

        :return:
            ``False`` when the write came from a stale generation and was dropped.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                return False
            self._entries.append(entry)
            return True

    def update_last(self, entry: ActionLogEntry, generation: int | None = None) -> bool:
        """Replace the last entry, or append if the log is empty.

        The replaced entry's start time is kept and the step duration
        is filled in when the status leaves ``pending``.
        """
        with self._lock:
            if generation is not None and generation != self._generation:
                return False

            if not self._entries:
                self._entries.append(entry)
                return True

            previous = self._entries[-1]
            started_at = entry.started_at if entry.started_at is not None else previous.started_at
            duration = entry.duration
            if duration is None and started_at is not None and entry.status != ActionStatus.pending:
                duration = time.monotonic() - started_at
            self._entries[-1] = replace(entry, started_at=started_at, duration=duration)
            return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    @property
    def last(self) -> ActionLogEntry | None:
        with self._lock:
            return self._entries[-1] if self._entries else None


class ActionLogWriter:
    """Writes to an :py:class:`ActionLog` for one generation."""

    def __init__(self, log: ActionLog, generation: int):
        self.log = log
        self.generation = generation

    @property
    def is_stale(self) -> bool:
        return self.generation != self.log.generation

    def add(
        self,
        message: str,
        status: ActionStatus = ActionStatus.pending,
        link: str | None = None,
        link_text: str | None = None,
    ) -> bool:
        entry = ActionLogEntry(
            message=message,
            status=status,
            timestamp=datetime.datetime.now(datetime.timezone.utc),
            link=link,
            link_text=link_text,
            started_at=time.monotonic() if status == ActionStatus.pending else None,
        )
        return self.log.append(entry, self.generation)

    def update_last(
        self,
        message: str,
        status: ActionStatus,
        link: str | None = None,
        link_text: str | None = None,
    ) -> bool:
        entry = ActionLogEntry(
            message=message,
            status=status,
            timestamp=datetime.datetime.now(datetime.timezone.utc),
            link=link,
            link_text=link_text,
        )
        return self.log.update_last(entry, self.generation)
