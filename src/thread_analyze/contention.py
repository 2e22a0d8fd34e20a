"""Lock contention ranking and thread state statistics."""

from __future__ import annotations

from .models import ContentionEntry, ThreadDump, ThreadInfo, ThreadState


def rank_contention(dump: ThreadDump) -> list[ContentionEntry]:
    """Rank locks by number of waiting threads, most contended first.

    Ties are broken by ascending lock identity. Locks nobody waits for are
    not contended and are left out. An owner outside the captured thread set
    (or no owner at all) is flagged ``owner_unknown``.
    """
    known = dump.thread_ids
    entries = [
        ContentionEntry(
            lock_identity=lock.identity,
            owner_thread=lock.owner_thread,
            waiter_count=len(lock.waiting_threads),
            waiter_ids=lock.waiting_threads,
            owner_unknown=lock.owner_thread is None or lock.owner_thread not in known,
        )
        for lock in dump.locks
        if lock.waiting_threads
    ]
    entries.sort(key=lambda entry: (-entry.waiter_count, entry.lock_identity))
    return entries


def count_states(dump: ThreadDump) -> dict[str, int]:
    """Thread count per state, with every state present."""
    counts = {state.value: 0 for state in ThreadState}
    for thread in dump.threads:
        counts[thread.state.value] += 1
    return counts


def blocked_threads(dump: ThreadDump) -> list[ThreadInfo]:
    return sorted(
        (thread for thread in dump.threads if thread.state is ThreadState.BLOCKED),
        key=lambda thread: thread.id,
    )


def total_waiters(entries: list[ContentionEntry]) -> int:
    return sum(entry.waiter_count for entry in entries)
