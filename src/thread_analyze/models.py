"""Typed records for thread dumps and the results of analysing them."""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

# ============================================================
# TYPE ALIASES
# ============================================================

ThreadId: TypeAlias = int
LockIdentity: TypeAlias = str

WarningCode: TypeAlias = Literal[
    "invalid-thread",
    "invalid-lock",
    "invalid-field",
    "unknown-state",
    "duplicate-thread",
    "duplicate-lock",
    "dangling-owner",
    "dangling-waiter",
    "ownership-mismatch",
    "held-and-waiting",
    "owner-waiting",
    "missing-waiter",
    "synthesized-lock",
]

DEFAULT_MAX_INPUT_BYTES = 10 * 1024 * 1024
DEFAULT_MERMAID_SCRIPT_URL = "https://cdn.jsdelivr.net/npm/mermaid/dist/mermaid.min.js"


class ThreadState(str, Enum):
    """JVM thread states."""

    RUNNABLE = "RUNNABLE"
    BLOCKED = "BLOCKED"
    WAITING = "WAITING"
    TIMED_WAITING = "TIMED_WAITING"
    NEW = "NEW"
    TERMINATED = "TERMINATED"


# ============================================================
# PYDANTIC MODELS
# ============================================================


class ThreadInfo(BaseModel):
    """A single thread captured in a dump.

    ``locks_held`` and ``locks_waiting`` are sets kept as sorted tuples so that
    every rendering of the same dump is byte-identical.
    """

    model_config = ConfigDict(frozen=True)

    id: ThreadId
    name: str
    state: ThreadState
    priority: int = 5
    stack_trace: tuple[str, ...] = ()
    locks_held: tuple[LockIdentity, ...] = ()
    locks_waiting: tuple[LockIdentity, ...] = ()
    annotations: tuple[str, ...] = ()


class LockInfo(BaseModel):
    """A monitor or ownable synchronizer and the threads around it."""

    model_config = ConfigDict(frozen=True)

    identity: LockIdentity
    owner_thread: ThreadId | None = None
    waiting_threads: tuple[ThreadId, ...] = ()


class ThreadDump(BaseModel):
    """Point-in-time snapshot of a process's threads and locks.

    Threads and locks are indexed once at construction, so lookups by id or
    identity are constant time.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: str = "Unknown"
    threads: tuple[ThreadInfo, ...] = ()
    locks: tuple[LockInfo, ...] = ()

    _threads_by_id: dict[ThreadId, ThreadInfo] = PrivateAttr(default_factory=dict)
    _locks_by_identity: dict[LockIdentity, LockInfo] = PrivateAttr(default_factory=dict)

    def model_post_init(self, _context: Any) -> None:
        self._threads_by_id = {thread.id: thread for thread in self.threads}
        self._locks_by_identity = {lock.identity: lock for lock in self.locks}

    @property
    def thread_ids(self) -> frozenset[ThreadId]:
        return frozenset(self._threads_by_id)

    def thread(self, thread_id: ThreadId) -> ThreadInfo | None:
        """Look up a thread by id."""
        return self._threads_by_id.get(thread_id)

    def lock(self, identity: LockIdentity) -> LockInfo | None:
        """Look up a lock by identity."""
        return self._locks_by_identity.get(identity)

    def thread_label(self, thread_id: ThreadId) -> str:
        """Human-readable thread reference, falling back to the bare id."""
        thread = self.thread(thread_id)
        if thread is None:
            return f"Thread {thread_id}"
        return f"Thread {thread_id} ({thread.name})"


class DumpWarning(BaseModel):
    """Non-fatal data problem found (and repaired) while parsing a dump."""

    model_config = ConfigDict(frozen=True)

    code: WarningCode
    message: str
    subject: str | None = None


class ParsedDump(BaseModel):
    """Result of a successful parse: the repaired dump plus what was repaired."""

    model_config = ConfigDict(frozen=True)

    dump: ThreadDump
    warnings: tuple[DumpWarning, ...] = ()


class DeadlockGroup(BaseModel):
    """A cycle in the wait-for graph.

    ``lock_chain[i]`` is the lock that ``thread_ids[i]`` waits for and that is
    owned by the next thread in the cycle (wrapping around to the first).
    """

    model_config = ConfigDict(frozen=True)

    thread_ids: tuple[ThreadId, ...]
    lock_chain: tuple[LockIdentity, ...]


class SelfWaitAnomaly(BaseModel):
    """A thread recorded as waiting for a lock it already owns."""

    model_config = ConfigDict(frozen=True)

    thread_id: ThreadId
    lock_identity: LockIdentity


class ContentionEntry(BaseModel):
    """A lock with at least one waiting thread."""

    model_config = ConfigDict(frozen=True)

    lock_identity: LockIdentity
    owner_thread: ThreadId | None
    waiter_count: int = Field(ge=1)
    waiter_ids: tuple[ThreadId, ...]
    owner_unknown: bool = False


class DumpAnalysis(BaseModel):
    """Structured analysis of one dump, suitable for JSON export."""

    model_config = ConfigDict(frozen=True)

    timestamp: str
    thread_count: int
    lock_count: int
    state_counts: dict[str, int]
    deadlocks: tuple[DeadlockGroup, ...] = ()
    self_waits: tuple[SelfWaitAnomaly, ...] = ()
    contention: tuple[ContentionEntry, ...] = ()
    warnings: tuple[DumpWarning, ...] = ()

    @property
    def has_deadlock(self) -> bool:
        return bool(self.deadlocks)


class AnalyzerSettings(BaseModel):
    """Tunable limits and rendering options."""

    top_n_contention: int = Field(default=10, ge=1)
    max_input_bytes: int = Field(default=DEFAULT_MAX_INPUT_BYTES, ge=1)
    mermaid_script_url: str = DEFAULT_MERMAID_SCRIPT_URL
    include_raw_dump: bool = True
