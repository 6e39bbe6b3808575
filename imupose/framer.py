#!/usr/bin/env python3
"""
framer.py — Recover JSON records from the raw sensor text stream.

termux-sensor prints consecutive JSON objects, sometimes separated by a
newline and sometimes not at all, and the pipe hands them over in chunks
that split anywhere.  The framer keeps one buffer and, per chunk:

  1. appends the chunk,
  2. splits at every ``}\\n{`` / ``}{`` boundary, parsing the left part
     (unparseable fragments are dropped),
  3. finally tries the whole remaining buffer as one record.

Anything that does not parse yet stays in the buffer for the next chunk.
"""

from __future__ import annotations

import codecs
import json
from dataclasses import dataclass
from typing import Iterator, Optional, Union

_NL_BOUNDARY = "}\n{"
_BOUNDARY    = "}{"


@dataclass
class FramerStats:
    records: int = 0      # records emitted
    dropped: int = 0      # fragments that failed to parse
    overflows: int = 0    # tails discarded by max_buffer


def _parse(text: str) -> Optional[dict]:
    text = text.strip()
    if not text:
        return None
    try:
        record = json.loads(text)
    except ValueError:
        return None
    return record if isinstance(record, dict) else None


class PacketFramer:
    """
    Split an append-only text stream into complete JSON object records.

    Parameters
    ----------
    max_buffer : int, optional
        Upper bound on characters left over once every complete record
        has been framed.  A longer unresolved tail is discarded.  ``None``
        never discards.
    """

    def __init__(self, max_buffer: Optional[int] = None):
        self.max_buffer = max_buffer
        self.stats = FramerStats()
        self._buf = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending(self) -> int:
        """Characters waiting for more input."""
        return len(self._buf)

    def feed(self, chunk: Union[str, bytes]) -> Iterator[dict]:
        """Append *chunk* and return a lazy iterator over completed records."""
        if isinstance(chunk, (bytes, bytearray)):
            chunk = self._decoder.decode(bytes(chunk))
        self._buf += chunk
        return self.records()

    def records(self) -> Iterator[dict]:
        """
        Yield every record the current buffer resolves to.

        The buffer is updated before each yield, so a partially consumed
        iterator can be abandoned and the remainder drained by calling
        ``records()`` again.
        """
        while True:
            idx = self._boundary()
            if idx < 0:
                break
            left = self._buf[:idx + 1]
            self._buf = self._buf[idx + 1:].lstrip()
            record = _parse(left)
            if record is None:
                self.stats.dropped += 1
                continue
            self.stats.records += 1
            yield record

        record = _parse(self._buf)
        if record is not None:
            self._buf = ""
            self.stats.records += 1
            yield record
            return

        self._enforce_limit()

    def reset(self) -> None:
        self._buf = ""
        self._decoder.reset()

    # ----------------------- Internal methods -----------------------

    def _boundary(self) -> int:
        """Index of the closing brace of the earliest record boundary, or -1."""
        nl = self._buf.find(_NL_BOUNDARY)
        bare = self._buf.find(_BOUNDARY)
        if nl < 0:
            return bare
        if bare < 0:
            return nl
        return min(nl, bare)

    def _enforce_limit(self) -> None:
        if self.max_buffer is None or len(self._buf) <= self.max_buffer:
            return
        # no boundary is left in the tail, so nothing in it can be recovered
        self.stats.overflows += 1
        self._buf = ""
