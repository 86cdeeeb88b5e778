"""
Output sinks owned by a decode session.

Every sink is a context manager: the session opens them before decoding and
closes them on every exit path.
"""

import logging
import socket
import time
from typing import BinaryIO, TextIO

from streamdbg.const import CSV_HEADER
from streamdbg.demux.errors import ForwardComplete
from streamdbg.schemas import RTPPacketRecord

logger = logging.getLogger(__name__)


class FileSink:
    """Raw byte sink, flushed after every write."""

    def __init__(self, path: str):
        self.path = path
        self.bytes_written = 0
        self._file: BinaryIO | None = None

    def __enter__(self) -> "FileSink":
        self._file = open(self.path, "wb")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def write(self, data: bytes) -> None:
        if self._file is None:
            raise RuntimeError(f"sink {self.path} is not open")
        self._file.write(data)
        self._file.flush()
        self.bytes_written += len(data)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            logger.info("[sink] Wrote %d bytes to %s", self.bytes_written, self.path)


class CsvRecordSink:
    """Diagnostic CSV, one row per accepted RTP packet."""

    def __init__(self, path: str):
        self.path = path
        self.rows = 0
        self._file: TextIO | None = None

    def __enter__(self) -> "CsvRecordSink":
        self._file = open(self.path, "w", newline="")
        self._file.write(CSV_HEADER + "\n")
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    def write_record(self, record: RTPPacketRecord) -> None:
        if self._file is None:
            raise RuntimeError(f"csv sink {self.path} is not open")
        self._file.write(record.as_csv_row() + "\n")
        self.rows += 1


def parse_remote_addr(remote_addr: str) -> tuple[str, int]:
    """Split 'host:port' into its parts."""
    host, sep, port = remote_addr.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"remote address must be host:port, got {remote_addr!r}")
    return host.strip("[]"), int(port)


class TCPForwarder:
    """
    Forwards verbatim RTP records to a TCP receiver.

    Sends are paced by a fixed delay so the receiver is not overrun. After
    ``limit`` records the next forward raises ForwardComplete.
    """

    def __init__(self, remote_addr: str, limit: int = 100, interval_ms: int = 5, timeout: float = 10.0):
        self.host, self.port = parse_remote_addr(remote_addr)
        self.limit = limit
        self.interval = interval_ms / 1000
        self.timeout = timeout
        self.sent = 0
        self._sock: socket.socket | None = None

    def __enter__(self) -> "TCPForwarder":
        self._sock = socket.create_connection((self.host, self.port), timeout=self.timeout)
        logger.info("[forward] Connected to %s:%d", self.host, self.port)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
            logger.info("[forward] Sent %d records to %s:%d", self.sent, self.host, self.port)

    def forward(self, record: bytes) -> None:
        if self._sock is None:
            raise RuntimeError("forwarder is not connected")
        if self.sent >= self.limit:
            raise ForwardComplete(f"forwarded {self.sent} records")
        self._sock.sendall(record)
        self.sent += 1
        if self.interval > 0:
            time.sleep(self.interval)
