"""Turn raw thread dump JSON into a validated, internally consistent ThreadDump.

Parsing is best-effort at the entry level: a thread or lock record that cannot
be used is dropped with a ``DumpWarning`` and the rest of the dump survives.
Only payload-level problems (empty content, invalid JSON, a payload that is not
an object, or an object with neither ``threads`` nor ``locks``) are fatal and
raise ``DumpParseError``.

The ``locks`` table is authoritative for ownership and waiting; the per-thread
``locks_held`` / ``locks_waiting`` arrays are reconciled against it and only
fill gaps the table leaves open.
"""

from __future__ import annotations

import json
import re
import stat
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, TypeAlias

from .models import (
    DEFAULT_MAX_INPUT_BYTES,
    DumpWarning,
    LockIdentity,
    LockInfo,
    ParsedDump,
    ThreadDump,
    ThreadId,
    ThreadInfo,
    ThreadState,
    WarningCode,
)

ParseErrorKind: TypeAlias = Literal["malformed", "missing", "empty", "too-large"]

STATE_TOKEN_PATTERN: re.Pattern[str] = re.compile(r"^\s*(?P<state>[A-Za-z_]+)")
INTEGER_PATTERN: re.Pattern[str] = re.compile(r"^\s*-?\d+\s*$")


class DumpParseError(ValueError):
    """Fatal problem with a thread dump payload."""

    def __init__(self, kind: ParseErrorKind, expected: str, found: str) -> None:
        self.kind = kind
        self.expected = expected
        self.found = found
        super().__init__(f"expected {expected}, found {found}")


# ============================================================
# DRAFT RECORDS (mutable while reconciling)
# ============================================================


@dataclass
class _ThreadDraft:
    id: ThreadId
    name: str
    state: ThreadState
    priority: int
    stack_trace: list[str]
    held: set[LockIdentity]
    waiting: set[LockIdentity]
    annotations: list[str] = field(default_factory=list)

    def freeze(self) -> ThreadInfo:
        return ThreadInfo(
            id=self.id,
            name=self.name,
            state=self.state,
            priority=self.priority,
            stack_trace=tuple(self.stack_trace),
            locks_held=tuple(sorted(self.held)),
            locks_waiting=tuple(sorted(self.waiting)),
            annotations=tuple(self.annotations),
        )


@dataclass
class _LockDraft:
    identity: LockIdentity
    owner: ThreadId | None
    waiters: list[ThreadId]
    synthesized: bool = False

    def freeze(self) -> LockInfo:
        return LockInfo(
            identity=self.identity, owner_thread=self.owner, waiting_threads=tuple(self.waiters)
        )


class _WarningLog:
    """Collects warnings in the order repairs happen."""

    def __init__(self) -> None:
        self.items: list[DumpWarning] = []

    def add(self, code: WarningCode, message: str, subject: object | None = None) -> None:
        self.items.append(
            DumpWarning(code=code, message=message, subject=None if subject is None else str(subject))
        )


# ============================================================
# FIELD COERCION
# ============================================================


def json_type_name(value: object) -> str:
    """Name a decoded JSON value's type the way a JSON author would."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    if isinstance(value, Mapping):
        return "object"
    return type(value).__name__


def coerce_thread_id(value: object) -> ThreadId | None:
    """Accept ints, integral floats and numeric strings; reject booleans."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and INTEGER_PATTERN.match(value):
        return int(value)
    return None


def coerce_lock_identity(value: object) -> LockIdentity | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value if value.strip() else None
    if isinstance(value, int):
        return str(value)
    return None


def normalize_state(value: object) -> ThreadState | None:
    """Map 'BLOCKED (on object monitor)', 'waiting', etc. onto ThreadState."""
    if not isinstance(value, str):
        return None
    match = STATE_TOKEN_PATTERN.match(value)
    if not match:
        return None
    token = match.group("state").upper()
    try:
        return ThreadState(token)
    except ValueError:
        return None


def _string_list(
    raw: object, field_name: str, subject: str, log: _WarningLog, *, allow_ints: bool = False
) -> list[str]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        log.add(
            "invalid-field",
            f"{subject}: '{field_name}' should be an array, found {json_type_name(raw)}; ignored",
            subject,
        )
        return []
    values: list[str] = []
    dropped = 0
    for item in raw:
        coerced = coerce_lock_identity(item) if allow_ints else item
        if isinstance(coerced, str):
            values.append(coerced)
        else:
            dropped += 1
    if dropped:
        log.add(
            "invalid-field",
            f"{subject}: dropped {dropped} non-string entr{'y' if dropped == 1 else 'ies'} "
            f"from '{field_name}'",
            subject,
        )
    return values


# ============================================================
# ENTRY PARSERS
# ============================================================


def _parse_thread(entry: object, index: int, log: _WarningLog) -> _ThreadDraft | None:
    position = f"threads[{index}]"
    if not isinstance(entry, Mapping):
        log.add(
            "invalid-thread",
            f"{position}: expected an object, found {json_type_name(entry)}; entry dropped",
            position,
        )
        return None

    thread_id = coerce_thread_id(entry.get("id"))
    if thread_id is None:
        found = "nothing" if "id" not in entry else json_type_name(entry["id"])
        log.add(
            "invalid-thread",
            f"{position}: expected an integer 'id', found {found}; entry dropped",
            position,
        )
        return None

    subject = f"thread {thread_id}"
    state = normalize_state(entry.get("state"))
    if state is None:
        raw_state = entry.get("state")
        found = "nothing" if raw_state is None else repr(raw_state)
        log.add(
            "unknown-state",
            f"{subject}: expected one of {', '.join(s.value for s in ThreadState)} for 'state', "
            f"found {found}; entry dropped",
            thread_id,
        )
        return None

    name = entry.get("name")
    if not isinstance(name, str) or not name:
        if name is not None and not isinstance(name, str):
            log.add(
                "invalid-field",
                f"{subject}: 'name' should be a string, found {json_type_name(name)}",
                thread_id,
            )
        name = f"Thread-{thread_id}"

    priority = entry.get("priority", 5)
    if isinstance(priority, bool) or not isinstance(priority, int):
        if priority is not None:
            log.add(
                "invalid-field",
                f"{subject}: 'priority' should be an integer, found {json_type_name(priority)}",
                thread_id,
            )
        priority = 5

    return _ThreadDraft(
        id=thread_id,
        name=name,
        state=state,
        priority=priority,
        stack_trace=_string_list(entry.get("stack_trace"), "stack_trace", subject, log),
        held=set(_string_list(entry.get("locks_held"), "locks_held", subject, log, allow_ints=True)),
        waiting=set(
            _string_list(entry.get("locks_waiting"), "locks_waiting", subject, log, allow_ints=True)
        ),
    )


def _parse_lock(entry: object, index: int, log: _WarningLog) -> _LockDraft | None:
    position = f"locks[{index}]"
    if not isinstance(entry, Mapping):
        log.add(
            "invalid-lock",
            f"{position}: expected an object, found {json_type_name(entry)}; entry dropped",
            position,
        )
        return None

    identity = coerce_lock_identity(entry.get("identity"))
    if identity is None:
        found = "nothing" if "identity" not in entry else json_type_name(entry["identity"])
        log.add(
            "invalid-lock",
            f"{position}: expected a non-empty string 'identity', found {found}; entry dropped",
            position,
        )
        return None

    owner: ThreadId | None = None
    raw_owner = entry.get("owner_thread")
    if raw_owner is not None:
        owner = coerce_thread_id(raw_owner)
        if owner is None:
            log.add(
                "invalid-field",
                f"lock {identity}: 'owner_thread' should be an integer or null, "
                f"found {json_type_name(raw_owner)}; treated as no owner",
                identity,
            )

    waiters: list[ThreadId] = []
    raw_waiters = entry.get("waiting_threads")
    if raw_waiters is not None and not isinstance(raw_waiters, list):
        log.add(
            "invalid-field",
            f"lock {identity}: 'waiting_threads' should be an array, "
            f"found {json_type_name(raw_waiters)}; ignored",
            identity,
        )
    elif raw_waiters:
        rejected = 0
        for raw_waiter in raw_waiters:
            waiter = coerce_thread_id(raw_waiter)
            if waiter is None:
                rejected += 1
            elif waiter not in waiters:
                waiters.append(waiter)
        if rejected:
            log.add(
                "invalid-field",
                f"lock {identity}: dropped {rejected} non-integer waiter id(s)",
                identity,
            )

    return _LockDraft(identity=identity, owner=owner, waiters=waiters)


# ============================================================
# CROSS-REFERENCE REPAIR
# ============================================================


def _synthesize_missing_locks(
    threads: dict[ThreadId, _ThreadDraft], locks: dict[LockIdentity, _LockDraft], log: _WarningLog
) -> None:
    """Create lock records for identities that only appear on the thread side."""
    for thread in threads.values():
        for identity in sorted(thread.held | thread.waiting):
            lock = locks.get(identity)
            if lock is None:
                lock = _LockDraft(identity=identity, owner=None, waiters=[], synthesized=True)
                locks[identity] = lock
                log.add(
                    "synthesized-lock",
                    f"lock {identity} is referenced by thread {thread.id} but missing from 'locks'; "
                    "reconstructed from thread data",
                    identity,
                )
            if not lock.synthesized:
                continue
            if identity in thread.waiting:
                if thread.id not in lock.waiters:
                    lock.waiters.append(thread.id)
            elif lock.owner is None:
                lock.owner = thread.id


def _apply_lock_table(
    lock: _LockDraft,
    threads: dict[ThreadId, _ThreadDraft],
    log: _WarningLog,
    self_waits: set[tuple[ThreadId, LockIdentity]],
) -> None:
    identity = lock.identity
    if lock.owner is not None:
        owner = threads.get(lock.owner)
        if owner is None:
            log.add(
                "dangling-owner",
                f"lock {identity} is owned by thread {lock.owner}, which is not in the dump",
                identity,
            )
        elif identity not in owner.held:
            owner.held.add(identity)
            owner.annotations.append(f"ownership of {identity} taken from the lock table")
            log.add(
                "ownership-mismatch",
                f"lock {identity} names thread {owner.id} as owner but the thread does not list it "
                "in 'locks_held'; using the lock table",
                owner.id,
            )

        if lock.owner in lock.waiters:
            lock.waiters.remove(lock.owner)
            self_waits.add((lock.owner, identity))
            log.add(
                "owner-waiting",
                f"lock {identity} lists its owner thread {lock.owner} as a waiter",
                identity,
            )
            if owner is not None:
                owner.waiting.add(identity)

    for waiter_id in lock.waiters:
        waiter = threads.get(waiter_id)
        if waiter is None:
            log.add(
                "dangling-waiter",
                f"lock {identity} lists waiter thread {waiter_id}, which is not in the dump",
                identity,
            )
        else:
            waiter.waiting.add(identity)


def _apply_thread_claims(
    thread: _ThreadDraft,
    locks: dict[LockIdentity, _LockDraft],
    log: _WarningLog,
    self_waits: set[tuple[ThreadId, LockIdentity]],
) -> None:
    for identity in sorted(thread.held):
        lock = locks[identity]
        if lock.owner == thread.id:
            continue
        thread.held.discard(identity)
        if identity in thread.waiting:
            thread.annotations.append(f"{identity} is both held and awaited; treated as awaited")
            log.add(
                "held-and-waiting",
                f"thread {thread.id} lists {identity} as both held and awaited; "
                "treating it as awaited only",
                thread.id,
            )
        else:
            owner = "no owner" if lock.owner is None else f"thread {lock.owner}"
            thread.annotations.append(f"claim on {identity} dropped; lock table says {owner}")
            log.add(
                "ownership-mismatch",
                f"thread {thread.id} claims to hold {identity} but the lock table records {owner}",
                thread.id,
            )

    for identity in sorted(thread.waiting):
        lock = locks[identity]
        if lock.owner == thread.id:
            if (thread.id, identity) not in self_waits:
                self_waits.add((thread.id, identity))
                log.add(
                    "owner-waiting",
                    f"thread {thread.id} waits for {identity}, which it owns",
                    thread.id,
                )
        elif thread.id not in lock.waiters:
            lock.waiters.append(thread.id)
            log.add(
                "missing-waiter",
                f"thread {thread.id} waits for {identity} but the lock table does not list it; "
                "added as a waiter",
                identity,
            )


# ============================================================
# PUBLIC API
# ============================================================


def _decode_payload(raw: str | bytes | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(raw, Mapping):
        return raw

    if isinstance(raw, bytes):
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise DumpParseError(
                "malformed", "UTF-8 encoded JSON", f"undecodable byte at offset {e.start}"
            ) from e
    else:
        text = raw

    if not text.strip():
        raise DumpParseError("empty", "a JSON thread dump", "empty content")

    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise DumpParseError(
            "malformed", "valid JSON", f"{e.msg} at line {e.lineno} column {e.colno}"
        ) from e
    except RecursionError as e:
        raise DumpParseError("malformed", "a thread dump JSON document", "nesting too deep to decode") from e

    if not isinstance(payload, Mapping):
        raise DumpParseError(
            "malformed", "a JSON object with 'threads' and 'locks'", json_type_name(payload)
        )
    return payload


def parse_dump(raw: str | bytes | Mapping[str, Any]) -> ParsedDump:
    """Parse and validate one thread dump payload.

    Raises:
        DumpParseError: the payload as a whole is unusable.
    """
    payload = _decode_payload(raw)

    raw_threads = payload.get("threads")
    raw_locks = payload.get("locks")
    if raw_threads is None and raw_locks is None:
        keys = ", ".join(sorted(str(key) for key in payload)) or "no keys"
        raise DumpParseError("malformed", "a 'threads' or 'locks' array", f"an object with {keys}")
    for key, value in (("threads", raw_threads), ("locks", raw_locks)):
        if value is not None and not isinstance(value, list):
            raise DumpParseError("malformed", f"'{key}' to be an array", json_type_name(value))

    log = _WarningLog()

    timestamp = payload.get("timestamp")
    if timestamp is None:
        timestamp = "Unknown"
    elif isinstance(timestamp, (int, float)) and not isinstance(timestamp, bool):
        timestamp = str(timestamp)
    elif not isinstance(timestamp, str):
        log.add(
            "invalid-field",
            f"'timestamp' should be a string, found {json_type_name(timestamp)}",
            "timestamp",
        )
        timestamp = "Unknown"

    threads: dict[ThreadId, _ThreadDraft] = {}
    for index, entry in enumerate(raw_threads or []):
        thread = _parse_thread(entry, index, log)
        if thread is None:
            continue
        if thread.id in threads:
            log.add(
                "duplicate-thread",
                f"thread id {thread.id} appears more than once; keeping the later entry",
                thread.id,
            )
        threads[thread.id] = thread

    locks: dict[LockIdentity, _LockDraft] = {}
    for index, entry in enumerate(raw_locks or []):
        lock = _parse_lock(entry, index, log)
        if lock is None:
            continue
        if lock.identity in locks:
            log.add(
                "duplicate-lock",
                f"lock {lock.identity} appears more than once; keeping the later entry",
                lock.identity,
            )
        locks[lock.identity] = lock

    self_waits: set[tuple[ThreadId, LockIdentity]] = set()
    _synthesize_missing_locks(threads, locks, log)
    for lock in locks.values():
        _apply_lock_table(lock, threads, log, self_waits)
    for thread in threads.values():
        _apply_thread_claims(thread, locks, log, self_waits)

    dump = ThreadDump(
        timestamp=timestamp,
        threads=tuple(thread.freeze() for thread in threads.values()),
        locks=tuple(lock.freeze() for lock in locks.values()),
    )
    return ParsedDump(dump=dump, warnings=tuple(log.items))


def load_dump(path: Path, *, max_bytes: int = DEFAULT_MAX_INPUT_BYTES) -> ParsedDump:
    """Read a dump file and parse it.

    Raises:
        DumpParseError: the file is missing, unreadable, empty, too large or
            malformed.
    """
    try:
        file_stat = path.stat()
    except FileNotFoundError as e:
        raise DumpParseError("missing", "an existing thread dump file", f"nothing at {path}") from e
    except OSError as e:
        raise DumpParseError("missing", "a readable thread dump file", f"{path}: {e.strerror or e}") from e
    if stat.S_ISDIR(file_stat.st_mode):
        raise DumpParseError("missing", "a thread dump file", f"a directory at {path}")

    size = file_stat.st_size
    if size == 0:
        raise DumpParseError("empty", "a non-empty thread dump file", f"an empty file at {path}")
    if size > max_bytes:
        raise DumpParseError(
            "too-large",
            f"a thread dump of at most {max_bytes} bytes",
            f"{size} bytes in {path}",
        )

    try:
        with path.open("rb") as f:
            content = f.read()
    except OSError as e:
        raise DumpParseError("missing", "a readable thread dump file", f"{path}: {e.strerror or e}") from e
    return parse_dump(content)


def load_dump_series(
    paths: Iterable[Path], *, max_bytes: int = DEFAULT_MAX_INPUT_BYTES
) -> list[ParsedDump]:
    """Load successive captures of the same process, in the given order."""
    return [load_dump(path, max_bytes=max_bytes) for path in paths]
