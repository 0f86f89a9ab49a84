"""
Utilities package for pg-cursor-stream.

Exports shared helpers for logging and stream profiling. Keep this package
free of cursor logic so the engine can import it without cycles.
"""

from pg_cursor_stream.utils.logging import configure_logging, get_logger
from pg_cursor_stream.utils.profiler import StreamProfile, profile_stream

__all__ = [
    "configure_logging",
    "get_logger",
    "StreamProfile",
    "profile_stream",
]
