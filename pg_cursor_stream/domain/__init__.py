"""
Domain package for pg-cursor-stream.

Exports the validated value objects shared by the cursor factory, the reader
and the CLI.
"""

from pg_cursor_stream.domain.models import CursorOptions, StreamReport

__all__ = [
    "CursorOptions",
    "StreamReport",
]
