"""Sequential chunked reading of log files.

Files are read in fixed-size byte chunks. A line that straddles a chunk
boundary is carried forward as bytes and completed by the next chunk, so
every line is decoded exactly once and multibyte UTF-8 sequences are never
split. The final line is emitted even when the file lacks a trailing newline.
"""

import logging
import math
import os
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from typing import BinaryIO

from logscope.config import DEFAULT_CHUNK_SIZE_MB, MB
from logscope.errors import ProcessingError


logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = DEFAULT_CHUNK_SIZE_MB * MB


def chunk_count(size: int, chunk_size: int) -> int:
    """Number of chunks needed to cover size bytes."""
    if chunk_size <= 0:
        raise ValueError('chunk_size must be positive')
    return math.ceil(size / chunk_size)


@dataclass(frozen=True)
class FileChunk:
    """A contiguous byte range of a file. Never stored."""

    file_id: str
    chunk_index: int
    start_byte: int
    end_byte: int  # exclusive
    data: bytes


@dataclass(frozen=True)
class RawLine:
    """One complete, decoded physical line."""

    file_id: str
    line_number: int  # 1-based
    offset: int  # byte offset of the line start
    text: str


class ChunkReader:
    """Reads a file as ordered chunks and reassembles complete lines.

    Args:
        source: Path to the file, or an open binary file object
        file_id: Owning file id, stamped on every chunk and line
        chunk_size: Bytes per chunk (default 5 MiB)
        cancel: Optional event checked between chunks; reading stops once set
    """

    def __init__(
        self,
        source: str | os.PathLike | BinaryIO,
        file_id: str,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        cancel: threading.Event | None = None,
    ):
        if chunk_size <= 0:
            raise ValueError('chunk_size must be positive')
        self.source = source
        self.file_id = file_id
        self.chunk_size = chunk_size
        self.cancel = cancel
        self.bytes_read = 0
        self.chunks_read = 0
        self.cancelled = False

    @property
    def size(self) -> int:
        if isinstance(self.source, (str, os.PathLike)):
            return os.path.getsize(self.source)
        pos = self.source.tell()
        end = self.source.seek(0, os.SEEK_END)
        self.source.seek(pos)
        return end

    @property
    def total_chunks(self) -> int:
        return chunk_count(self.size, self.chunk_size)

    def _open(self) -> tuple[BinaryIO, bool]:
        if isinstance(self.source, (str, os.PathLike)):
            try:
                return open(self.source, 'rb'), True
            except OSError as e:
                raise ProcessingError(f'Cannot open {self.source}: {e}', file_id=self.file_id) from e
        return self.source, False

    def iter_chunks(self) -> Iterator[FileChunk]:
        """Yield the file's chunks in order."""
        f, owned = self._open()
        try:
            offset = 0
            index = 0
            while True:
                if self.cancel is not None and self.cancel.is_set():
                    self.cancelled = True
                    logger.debug(f'[CHUNK] {self.file_id}: cancelled after {index} chunks')
                    return
                try:
                    data = f.read(self.chunk_size)
                except OSError as e:
                    raise ProcessingError(f'Read failed at byte {offset}: {e}', file_id=self.file_id) from e
                if not data:
                    return
                chunk = FileChunk(self.file_id, index, offset, offset + len(data), data)
                offset += len(data)
                index += 1
                self.bytes_read = offset
                self.chunks_read = index
                yield chunk
        finally:
            if owned:
                f.close()

    def iter_lines(self) -> Iterator[RawLine]:
        """Yield every line of the file exactly once, in file order.

        Line terminators (\\n or \\r\\n) are stripped. A UTF-8 byte order mark
        on the first line is dropped.
        """
        carry = b''
        carry_offset = 0
        line_number = 0

        for chunk in self.iter_chunks():
            buf = carry + chunk.data if carry else chunk.data
            base = carry_offset
            start = 0
            while True:
                nl = buf.find(b'\n', start)
                if nl == -1:
                    break
                line_number += 1
                yield self._make_line(line_number, base + start, buf[start:nl])
                start = nl + 1
            carry = buf[start:]
            carry_offset = base + start

        if carry and not self.cancelled:
            line_number += 1
            yield self._make_line(line_number, carry_offset, carry)

    def _make_line(self, line_number: int, offset: int, data: bytes) -> RawLine:
        if data.endswith(b'\r'):
            data = data[:-1]
        if line_number == 1 and data.startswith(b'\xef\xbb\xbf'):
            data = data[3:]
        return RawLine(self.file_id, line_number, offset, data.decode('utf-8', errors='replace'))
