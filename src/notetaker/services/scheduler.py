"""Debounced persistence scheduler.

Turns bursts of in-memory edits into single durable writes. Each note has
one row in an explicit state table::

    note id -> PendingWrite(timer, task, dirty, last_error)

* ``schedule`` (re)arms the timer; a burst of edits collapses into one write.
* When the timer fires, the *latest* in-memory note is written, not a
  snapshot taken at schedule time.
* At most one write per note is in flight. An edit arriving meanwhile sets
  ``dirty`` and exactly one follow-up write is armed once the in-flight
  write completes.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from notetaker.database.store import Collection, ObjectStore, Op, Put
from notetaker.models.note import Note, utc_now
from notetaker.services.coordination import KeyedLocks
from notetaker.services.versioning import record_if_changed

logger = logging.getLogger(__name__)

DEFAULT_SAVE_DELAY = 1.5

WrittenCallback = Callable[[Optional[Note], Note, bool], None]
ErrorCallback = Callable[[str, Exception], None]


@dataclass
class PendingWrite:
    """State table row for one note."""

    timer: Optional[asyncio.TimerHandle] = None
    task: Optional["asyncio.Task[Optional[Exception]]"] = None
    dirty: bool = False  # edited while a write was in flight
    last_error: Optional[Exception] = None

    @property
    def in_flight(self) -> bool:
        return self.task is not None


class PersistenceScheduler:
    """Coalesces edits per note into debounced, versioned writes."""

    def __init__(
        self,
        store: ObjectStore,
        load_latest: Callable[[str], Optional[Note]],
        delay: float = DEFAULT_SAVE_DELAY,
        on_written: Optional[WrittenCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        locks: Optional[KeyedLocks] = None,
    ):
        """Initialize the scheduler.

        Args:
            store: Store receiving the writes
            load_latest: Returns the current in-memory note, or None if it
                no longer exists
            delay: Quiet period in seconds before a write fires
            on_written: Called with (previous, written, content_changed)
                after each successful write
            on_error: Called with (note_id, error) when a write fails
            locks: Per-note locks shared with other writers of notes
        """
        self.store = store
        self.load_latest = load_latest
        self.delay = delay
        self.on_written = on_written
        self.on_error = on_error
        self.locks = locks or KeyedLocks()
        self._table: dict[str, PendingWrite] = {}

    # ==================== State table ====================

    def is_scheduled(self, note_id: str) -> bool:
        entry = self._table.get(note_id)
        return entry is not None and entry.timer is not None

    def is_in_flight(self, note_id: str) -> bool:
        entry = self._table.get(note_id)
        return entry is not None and entry.in_flight

    def pending_ids(self) -> list[str]:
        """Ids of notes with a scheduled or in-flight write."""
        return list(self._table)

    # ==================== Scheduling ====================

    def schedule(self, note_id: str) -> None:
        """Request a durable write of the note after the quiet period."""
        entry = self._table.setdefault(note_id, PendingWrite())
        if entry.in_flight:
            entry.dirty = True
            return
        self._arm(note_id, entry)

    def discard(self, note_id: str) -> None:
        """Drop any write that has not started yet (used when deleting a note)."""
        entry = self._table.get(note_id)
        if entry is None:
            return
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
        entry.dirty = False
        if not entry.in_flight:
            del self._table[note_id]

    def _arm(self, note_id: str, entry: PendingWrite) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
        loop = asyncio.get_running_loop()
        entry.timer = loop.call_later(self.delay, self._fire, note_id)

    def _fire(self, note_id: str) -> None:
        entry = self._table.get(note_id)
        if entry is None or entry.in_flight:
            return
        entry.timer = None
        entry.task = asyncio.get_running_loop().create_task(self._run(note_id, entry))

    async def _run(self, note_id: str, entry: PendingWrite) -> Optional[Exception]:
        error: Optional[Exception] = None
        try:
            await self._write(note_id)
        except Exception as exc:
            error = exc
            logger.warning("Saving note %s failed: %s", note_id, exc)
            if self.on_error is not None:
                self.on_error(note_id, exc)
        finally:
            entry.task = None
            entry.last_error = error
            if entry.dirty:
                entry.dirty = False
                self._arm(note_id, entry)
            elif entry.timer is None and self._table.get(note_id) is entry:
                del self._table[note_id]
        return error

    async def _write(self, note_id: str) -> None:
        """Persist the latest in-memory note with its version snapshot."""
        async with self.locks.lock_for(note_id):
            note = self.load_latest(note_id)
            if note is None:
                logger.debug("Note %s vanished before its write", note_id)
                return

            previous = await self.store.get(Collection.NOTES, note_id)
            version = None
            if previous is not None:
                version = record_if_changed(previous, note, utc_now())

            ops: list[Op] = []
            if version is not None:
                ops.append(Put(Collection.VERSIONS, version))
            ops.append(Put(Collection.NOTES, note))
            await self.store.transact(ops)

            logger.debug(
                "Saved note %s%s", note_id, " with new version" if version else ""
            )
            if self.on_written is not None:
                self.on_written(previous, note, version is not None)

    # ==================== Flushing ====================

    async def flush(self, note_id: str) -> None:
        """Write the note's pending changes now and wait for the result.

        Raises:
            Exception: Whatever the write raised
        """
        entry = self._table.get(note_id)
        while entry is not None:
            if entry.timer is not None:
                entry.timer.cancel()
                entry.timer = None
                self._fire(note_id)
            if entry.task is None:
                break
            error = await entry.task
            if error is not None:
                raise error
            entry = self._table.get(note_id)

    async def drain(self) -> None:
        """Flush every pending write; errors are reported through on_error."""
        while self._table:
            await asyncio.gather(
                *(self.flush(note_id) for note_id in list(self._table)),
                return_exceptions=True,
            )
