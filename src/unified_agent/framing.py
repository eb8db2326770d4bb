from __future__ import annotations

from typing import List


class LineBuffer:
    """
    Accumulates arbitrary byte chunks and yields complete newline-terminated
    lines. The trailing fragment is kept until the next chunk (or ``flush``).
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, chunk: bytes) -> List[str]:
        self._buffer.extend(chunk)
        if b"\n" not in chunk:
            return []
        *complete, rest = bytes(self._buffer).split(b"\n")
        self._buffer = bytearray(rest)
        return [line for line in (self._decode(raw) for raw in complete) if line]

    def flush(self) -> List[str]:
        line = self._decode(bytes(self._buffer))
        self._buffer.clear()
        return [line] if line else []

    @property
    def pending(self) -> int:
        return len(self._buffer)

    @staticmethod
    def _decode(raw: bytes) -> str:
        # Decoding per line keeps multi-byte characters split across chunks intact
        return raw.decode("utf-8", errors="replace").strip()
