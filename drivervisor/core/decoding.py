"""
Incremental text decoding for driver output.

Some drivers write UTF-16LE to their pipes instead of the platform default,
so the decoder either uses a fixed codec or sniffs the first bytes it sees.
"""

from __future__ import annotations

import codecs
import logging

logger = logging.getLogger(__name__)

AUTO = "auto"

# Minimum number of bytes needed before the NUL heuristic is trusted
_SNIFF_BYTES = 4


def detect_encoding(data: bytes) -> str:
    """
    Guess the codec of a chunk of process output.

    BOMs win. Without one, ASCII text encoded as UTF-16LE has a NUL in
    (nearly) every odd position, which plain UTF-8 output never has.
    """
    if data.startswith(codecs.BOM_UTF8):
        return "utf-8-sig"
    if data.startswith(codecs.BOM_UTF16_LE):
        return "utf-16"
    if data.startswith(codecs.BOM_UTF16_BE):
        return "utf-16"

    odd = data[1::2]
    if odd and odd.count(0) * 4 >= len(odd) * 3:
        even = data[0::2]
        if even.count(0) * 4 < len(even):
            return "utf-16-le"
    return "utf-8"


class StreamDecoder:
    """
    Decode a byte stream chunk by chunk.

    Multi-byte sequences split across chunks are carried over to the next
    call. With ``encoding="auto"`` the codec is picked from the first bytes.
    """

    def __init__(self, encoding: str = AUTO, errors: str = "replace"):
        if encoding != AUTO:
            codecs.lookup(encoding)
        self.encoding = encoding
        self.errors = errors
        self._decoder: codecs.IncrementalDecoder | None = None
        self._resolved: str | None = None
        self._pending = b""

        if encoding != AUTO:
            self._resolved = encoding
            self._decoder = codecs.getincrementaldecoder(encoding)(errors=errors)

    @property
    def detected(self) -> str | None:
        """Codec in use, or None while auto-detection is still waiting for bytes."""
        return self._resolved

    def decode(self, data: bytes, final: bool = False) -> str:
        if self._decoder is None:
            self._pending += data
            if len(self._pending) < _SNIFF_BYTES and not final:
                return ""
            self._resolved = detect_encoding(self._pending)
            logger.debug(f"Detected output encoding: {self._resolved}")
            self._decoder = codecs.getincrementaldecoder(self._resolved)(
                errors=self.errors
            )
            data, self._pending = self._pending, b""

        return self._decoder.decode(data, final)
