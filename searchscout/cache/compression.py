"""
Cache Payload Codec

Entries are JSON text. Anything above the size threshold is compressed
(LZ4, or ZSTD for very large analyses) and base64 encoded so the result
is still a plain string for the storage backends.

Encoded layout is a 1-character marker followed by the body:
    "0" + raw JSON text          (below the compression threshold)
    "1" + base64(lz4 frame)
    "2" + base64(zstd frame)
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import lz4.frame
import zstandard


logger = logging.getLogger(__name__)


MARKER_UNCOMPRESSED = "0"
MARKER_LZ4 = "1"
MARKER_ZSTD = "2"

DEFAULT_THRESHOLD = 1024  # 1KB
DEFAULT_ZSTD_THRESHOLD = 100 * 1024  # 100KB


class CompressionError(Exception):
    """Raised when encoded cache text cannot be decoded."""


@dataclass(frozen=True)
class CompressionStats:
    """Sizes of one compressed payload, in characters of stored text."""
    algorithm: str
    raw_length: int
    stored_length: int

    @property
    def ratio(self) -> float:
        return self.raw_length / self.stored_length if self.stored_length else 0.0


class CacheCompressor:
    """
    Encodes cache payloads for storage.

    Keyword lists are highly repetitive JSON and LZ4 typically shrinks
    them 3-5x even after base64. ZSTD is slower but wins on the large
    analysis payloads. If the encoded form is not shorter than the raw
    text the raw text is stored instead.
    """

    def __init__(
        self,
        enabled: bool = True,
        threshold: int = DEFAULT_THRESHOLD,
        use_zstd_threshold: int = DEFAULT_ZSTD_THRESHOLD,
    ):
        self.enabled = enabled
        self.threshold = threshold
        self.use_zstd_threshold = use_zstd_threshold

        self._zstd_compressor = zstandard.ZstdCompressor(level=3)
        self._zstd_decompressor = zstandard.ZstdDecompressor()

    def _frame(self, data: bytes) -> Tuple[str, str, bytes]:
        if len(data) >= self.use_zstd_threshold:
            return MARKER_ZSTD, "zstd", self._zstd_compressor.compress(data)
        return MARKER_LZ4, "lz4", lz4.frame.compress(data)

    def compress(self, text: str) -> Tuple[str, Optional[CompressionStats]]:
        """
        Encode text for storage.

        Returns:
            (stored_text, stats); stats is None when the text is stored raw
        """
        data = text.encode("utf-8")
        if not self.enabled or len(data) < self.threshold:
            return MARKER_UNCOMPRESSED + text, None

        marker, algorithm, framed = self._frame(data)
        stored = marker + base64.b64encode(framed).decode("ascii")

        if len(stored) >= len(text):
            logger.debug(f"{algorithm} did not shrink a {len(text)} char payload, storing raw")
            return MARKER_UNCOMPRESSED + text, None

        return stored, CompressionStats(
            algorithm=algorithm,
            raw_length=len(text),
            stored_length=len(stored),
        )

    def decompress(self, text: str) -> str:
        """
        Decode text produced by compress().

        Raises:
            CompressionError: Empty input, unknown marker or corrupt body
        """
        if not text:
            raise CompressionError("Empty cache payload")

        marker, body = text[0], text[1:]

        if marker == MARKER_UNCOMPRESSED:
            return body
        if marker not in (MARKER_LZ4, MARKER_ZSTD):
            raise CompressionError(f"Unknown compression marker: {marker!r}")

        try:
            framed = base64.b64decode(body.encode("ascii"), validate=True)
            if marker == MARKER_ZSTD:
                data = self._zstd_decompressor.decompress(framed)
            else:
                data = lz4.frame.decompress(framed)
            return data.decode("utf-8")
        except (binascii.Error, UnicodeError, RuntimeError, zstandard.ZstdError) as e:
            raise CompressionError(f"Decompression failed: {e}") from e


def _json_default(obj: Any) -> Any:
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    if hasattr(obj, "__dict__"):
        return obj.__dict__
    return str(obj)


def serialize_value(value: Any) -> str:
    """
    JSON text for a cache payload.

    Pydantic models are dumped in JSON mode; dates use isoformat() and
    other objects fall back to __dict__ or str().
    """
    return json.dumps(value, default=_json_default, ensure_ascii=False)


def deserialize_value(text: str) -> Any:
    if not text:
        return None
    return json.loads(text)
