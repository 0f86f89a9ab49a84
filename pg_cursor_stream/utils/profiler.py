"""
Stream profiling for pg-cursor-stream.

Tracks what a cursor stream delivered (batches, rows, largest batch) together
with wall-clock time and peak RSS. RSS is sampled with psutil at every batch
boundary, which is where a batched reader's memory peaks: the previous batch
has been handled and the next one has just been materialized.

Usage:
    from pg_cursor_stream.utils.profiler import profile_stream

    with profile_stream("events") as profile:
        async for batch in stream:
            profile.record_batch(len(batch))

    print(profile.rows, profile.batches, profile.peak_rss_bytes)
"""

from __future__ import annotations

import contextlib
import time
from dataclasses import dataclass, field
from typing import Generator, Optional

import psutil


@dataclass
class StreamProfile:
    """
    Measurements for one streamed query.
    """

    label: str
    batches: int = 0
    rows: int = 0
    largest_batch: int = 0
    start_ts: float = field(default=0.0)
    end_ts: float = field(default=0.0)
    duration_seconds: float = field(default=0.0)
    peak_rss_bytes: Optional[int] = field(default=None)
    _process: Optional[psutil.Process] = field(default=None, repr=False)

    def sample_rss(self) -> None:
        if self._process is None:
            return
        try:
            rss = self._process.memory_info().rss
        except psutil.Error:
            return
        if self.peak_rss_bytes is None or rss > self.peak_rss_bytes:
            self.peak_rss_bytes = rss

    def record_batch(self, size: int) -> None:
        self.batches += 1
        self.rows += size
        self.largest_batch = max(self.largest_batch, size)
        self.sample_rss()

    @property
    def throughput_rows_per_sec(self) -> float:
        return self.rows / self.duration_seconds if self.duration_seconds > 0 else 0.0


@contextlib.contextmanager
def profile_stream(label: str, track_rss: bool = True) -> Generator[StreamProfile, None, None]:
    """
    Context manager yielding a `StreamProfile` to feed with `record_batch`.

    Parameters
    ----------
    label : str
        Human-friendly label, usually the cursor name or query.
    track_rss : bool
        Whether to sample process RSS at start, per batch and at exit.
    """
    profile = StreamProfile(label=label, _process=psutil.Process() if track_rss else None)
    profile.sample_rss()
    profile.start_ts = time.perf_counter()
    try:
        yield profile
    finally:
        profile.end_ts = time.perf_counter()
        profile.duration_seconds = profile.end_ts - profile.start_ts
        profile.sample_rss()


__all__ = ["StreamProfile", "profile_stream"]
