"""
Bit-level cursor over an in-memory buffer.

All multi-byte fields are big-endian. The cursor borrows the buffer and never
copies or mutates it; its only state is the absolute bit position.
"""

from streamdbg.demux.errors import InsufficientData

MAX_READ_BITS = 32


class BitCursor:
    """
    Sequential bit/byte reader over a fixed buffer.

    Usage:
        cursor = BitCursor(data)
        version = cursor.read(2)
        cursor.skip(6)
        payload = cursor.read_bytes(16)
    """

    def __init__(self, buffer: bytes) -> None:
        self._buf = buffer
        self._size = len(buffer)
        self._pos = 0  # absolute bit offset

    @property
    def size(self) -> int:
        """Buffer length in bytes."""
        return self._size

    @property
    def position(self) -> int:
        """Absolute bit offset."""
        return self._pos

    @property
    def byte_position(self) -> int:
        """Absolute byte offset (rounded down when not byte-aligned)."""
        return self._pos >> 3

    @property
    def remaining(self) -> int:
        """Bits left before the end of the buffer."""
        return self._size * 8 - self._pos

    @property
    def aligned(self) -> bool:
        return self._pos & 7 == 0

    def read(self, n: int) -> int:
        """Read the next n bits (1..32) as an unsigned integer."""
        if not 1 <= n <= MAX_READ_BITS:
            raise ValueError(f"bit count must be within 1..{MAX_READ_BITS}, got {n}")
        self._require(n)

        end = self._pos + n
        first = self._pos >> 3
        last = (end + 7) >> 3
        chunk = int.from_bytes(self._buf[first:last], "big")
        value = (chunk >> (last * 8 - end)) & ((1 << n) - 1)
        self._pos = end
        return value

    def skip(self, n: int) -> None:
        """Advance n bits without materializing a value."""
        if n < 0:
            raise ValueError(f"cannot skip a negative bit count ({n})")
        self._require(n)
        self._pos += n

    def read_bytes(self, n: int) -> bytes:
        """Read n whole bytes; the cursor must be byte-aligned."""
        if not self.aligned:
            raise ValueError(f"read_bytes requires a byte-aligned cursor (bit position {self._pos})")
        if n < 0:
            raise ValueError(f"cannot read a negative byte count ({n})")
        self._require(n * 8)
        start = self._pos >> 3
        self._pos += n * 8
        return bytes(self._buf[start : start + n])

    def seek_byte(self, offset: int) -> None:
        """
        Jump forward to an absolute byte offset.

        Only used by resynchronization; moving backwards or beyond the buffer
        end is refused.
        """
        target = offset * 8
        if target < self._pos:
            raise ValueError(f"cannot seek backwards from bit {self._pos} to byte {offset}")
        if offset > self._size:
            raise InsufficientData(f"seek target {offset} beyond buffer end {self._size}", self.byte_position)
        self._pos = target

    def _require(self, bits: int) -> None:
        if bits > self.remaining:
            raise InsufficientData(
                f"need {bits} bits at bit {self._pos}, only {self.remaining} available",
                self.byte_position,
            )
