"""Line reading from long-lived child process pipes."""

from __future__ import annotations

import asyncio
import logging

logger = logging.getLogger(__name__)

# StreamReader buffer limit for child pipes (asyncio default is 64 KiB)
STREAM_LIMIT: int = 1024 * 1024

# Stands in for a line that exceeded the buffer limit
OVERSIZED_LINE: bytes = b"...[truncated]\n"


async def read_line(stream: asyncio.StreamReader) -> bytes:
    """Read one line, surviving lines longer than the stream limit.

    StreamReader.readline() raises ValueError for an oversized line after
    discarding it (or the buffered part of it), so reading can continue.

    Returns:
        The line, OVERSIZED_LINE for a discarded line, or b"" at EOF
    """
    try:
        return await stream.readline()
    except ValueError as e:
        logger.debug(f"Discarded oversized output line: {e}")
        return OVERSIZED_LINE
