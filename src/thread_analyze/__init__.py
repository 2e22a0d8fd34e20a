"""Thread dump deadlock and lock contention analyzer."""

from .analysis import analyze_dump, analyze_file
from .contention import rank_contention
from .deadlock import find_deadlocks, find_self_waits
from .parser import DumpParseError, load_dump, parse_dump

__version__ = "1.0.0"

__all__ = [
    "DumpParseError",
    "analyze_dump",
    "analyze_file",
    "find_deadlocks",
    "find_self_waits",
    "load_dump",
    "parse_dump",
    "rank_contention",
]
