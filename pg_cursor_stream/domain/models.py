"""
Domain models for pg-cursor-stream.

`CursorOptions` validates what a caller asks for before any SQL is sent;
`StreamReport` is the summary produced by the bundled reader/CLI.
"""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class CursorOptions(BaseModel):
    """
    Validated arguments of a cursor declaration.
    """

    query: str = Field(..., description="Caller-trusted SQL, embedded verbatim.")
    batch_size: int = Field(..., ge=1, strict=True, description="Rows per FETCH.")

    model_config = {
        "frozen": True,
    }


class StreamReport(BaseModel):
    """
    Outcome of streaming one query to completion.
    """

    query: str
    driver: str
    cursor_name: str
    batch_size: int = Field(..., ge=1)
    batches: int = Field(0, ge=0)
    rows: int = Field(0, ge=0)
    largest_batch: int = Field(0, ge=0)
    duration_seconds: float = 0.0
    throughput_rows_per_sec: float = 0.0
    peak_rss_bytes: Optional[int] = None

    model_config = {
        "frozen": True,
    }


__all__ = ["CursorOptions", "StreamReport"]
