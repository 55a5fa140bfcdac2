"""Per-process static attribute cache."""

import logging
import threading
from collections.abc import Iterable, Sequence

from procsnap.models import ProcessStaticInfo

logger = logging.getLogger(__name__)

UNKNOWN_USER = "-"


class StaticInfoCache:
    """
    Map from pid to the attributes that do not change over a process lifetime.

    Entries are created on first sighting and never updated afterwards, even if
    a later reading reports a different name, command or user. Nothing is
    evicted unless ``prune`` is called explicitly.
    """

    def __init__(self) -> None:
        """Initialize an empty cache."""
        self.lock = threading.RLock()
        self._entries: dict[int, ProcessStaticInfo] = {}

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)

    def __contains__(self, pid: object) -> bool:
        with self.lock:
            return pid in self._entries

    def get_or_create(
        self,
        pid: int,
        name: str,
        argv: Sequence[str],
        user_id: int | str | None,
    ) -> ProcessStaticInfo:
        """
        Return the cached entry for ``pid``, creating it from the observed values.

        Args:
            pid: Process id.
            name: Observed process name.
            argv: Observed argument vector.
            user_id: Observed owning user id, or None when unavailable.
        """
        with self.lock:
            info = self._entries.get(pid)
            if info is None:
                info = ProcessStaticInfo(
                    name=name,
                    command=" ".join(argv),
                    user=UNKNOWN_USER if user_id is None else str(user_id),
                )
                self._entries[pid] = info
            return info

    def prune(self, live_pids: Iterable[int]) -> int:
        """Drop entries whose pid is not in ``live_pids``. Returns the number removed."""
        live = set(live_pids)
        with self.lock:
            stale = [pid for pid in self._entries if pid not in live]
            for pid in stale:
                del self._entries[pid]
        if stale:
            logger.debug("Pruned %d static info entries", len(stale))
        return len(stale)
