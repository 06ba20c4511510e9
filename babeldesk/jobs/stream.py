"""Line splitting for subprocess output streams."""

import asyncio
import codecs
import re
from typing import AsyncIterator, List

# tqdm-style progress bars rewrite the line with a bare carriage return
_LINE_BREAK = re.compile(r"\r\n|\r|\n")

READ_CHUNK_SIZE = 64 * 1024


class LineSplitter:
    """Incrementally decodes bytes and yields complete lines.

    Partial lines are buffered until a line break arrives or ``flush`` is
    called at end of stream.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, data: bytes) -> List[str]:
        text = self._pending + self._decoder.decode(data)
        # a trailing \r may be the first half of \r\n
        held = ""
        if text.endswith("\r"):
            text, held = text[:-1], "\r"
        parts = _LINE_BREAK.split(text)
        self._pending = parts.pop() + held
        return parts

    def flush(self) -> List[str]:
        text = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return [part for part in _LINE_BREAK.split(text) if part]


async def iter_lines(
    reader: asyncio.StreamReader, encoding: str = "utf-8"
) -> AsyncIterator[str]:
    """Yield decoded lines from ``reader`` until EOF."""
    splitter = LineSplitter(encoding)
    while True:
        chunk = await reader.read(READ_CHUNK_SIZE)
        if not chunk:
            break
        for line in splitter.feed(chunk):
            yield line
    for line in splitter.flush():
        yield line
