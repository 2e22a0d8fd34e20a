import json
from pathlib import Path

import pytest

from thread_analyze.parser import parse_dump

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def make_thread(thread_id, name=None, state="RUNNABLE", held=(), waiting=()):
    return {
        "id": thread_id,
        "name": name or f"thread-{thread_id}",
        "state": state,
        "priority": 5,
        "stack_trace": [],
        "locks_held": list(held),
        "locks_waiting": list(waiting),
    }


def make_lock(identity, owner=None, waiters=()):
    return {"identity": identity, "owner_thread": owner, "waiting_threads": list(waiters)}


def make_ring(size, reverse=False):
    """Circular wait: thread i holds L{i} and waits for L{i+1}; the last waits for L1."""
    threads = []
    locks = []
    for i in range(1, size + 1):
        next_lock = f"L{i % size + 1}"
        previous = size if i == 1 else i - 1
        threads.append(make_thread(i, state="BLOCKED", held=[f"L{i}"], waiting=[next_lock]))
        locks.append(make_lock(f"L{i}", owner=i, waiters=[previous]))
    if reverse:
        threads.reverse()
        locks.reverse()
    return {"timestamp": "ring", "threads": threads, "locks": locks}


@pytest.fixture
def fixtures_dir():
    return FIXTURES_DIR


@pytest.fixture
def simple_payload():
    return json.loads((FIXTURES_DIR / "simple_contention.json").read_text(encoding="utf-8"))


@pytest.fixture
def simple_dump(simple_payload):
    """main (no locks), worker-1 holding H, worker-2 blocked on H."""
    return parse_dump(simple_payload).dump


@pytest.fixture
def deadlock_dump():
    """Thread-1 and Thread-2 waiting on each other's lock."""
    return parse_dump((FIXTURES_DIR / "deadlock_pair.json").read_bytes()).dump


@pytest.fixture
def empty_dump():
    return parse_dump((FIXTURES_DIR / "empty_dump.json").read_text(encoding="utf-8")).dump
