"""
Compression Codec

zlib deflate/inflate helpers. Independent of the message path: frames are
never compressed before sealing.
"""

import zlib
from typing import Optional

from .errors import CompressionError, ErrorCode


DEFAULT_LEVEL = 6


def compress(data: bytes, level: int = DEFAULT_LEVEL) -> bytes:
    """
    Deflate data.

    Args:
        data: Bytes to compress
        level: 0 (store) to 9 (best compression)

    Raises:
        CompressionError: If level is outside 0..9
    """
    if isinstance(level, bool) or not isinstance(level, int) or not 0 <= level <= 9:
        raise CompressionError(f"Invalid compression level {level}", ErrorCode.COMPRESS)
    try:
        return zlib.compress(bytes(data), level)
    except zlib.error as exc:
        raise CompressionError(f"Compression failed: {exc}", ErrorCode.COMPRESS) from exc


def decompress(data: bytes, max_size: Optional[int] = None) -> bytes:
    """
    Inflate data produced by compress().

    Args:
        data: zlib stream
        max_size: Reject output larger than this many bytes

    Raises:
        CompressionError: On corrupt or truncated input, or output over max_size
    """
    inflater = zlib.decompressobj()
    try:
        if max_size is None:
            result = inflater.decompress(bytes(data))
        else:
            result = inflater.decompress(bytes(data), max_size + 1)
            if len(result) > max_size:
                raise CompressionError(
                    f"Decompressed data exceeds {max_size} bytes", ErrorCode.DECOMPRESS
                )
    except zlib.error as exc:
        raise CompressionError(f"Decompression failed: {exc}", ErrorCode.DECOMPRESS) from exc

    if not inflater.eof:
        raise CompressionError("Compressed data is truncated", ErrorCode.DECOMPRESS)
    return result
