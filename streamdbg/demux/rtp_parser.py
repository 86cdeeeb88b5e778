"""
RTP capture parser.

The capture format stores each RTP packet as a record:

    u16 record_length | RTP header (12 bytes + 4 * CC) | payload

``record_length`` is not part of RTP itself; it counts the RTP header plus
payload and is trusted even for packets we reject, so the cursor stays on
record boundaries.

Accepted payloads carry an MPEG Program Stream. Until a payload containing
the 0x000001BB marker has been seen, payloads are discarded: bytes sampled
mid-stream cannot be parsed before the stream layout is known.
"""

import logging
from collections.abc import Iterator
from dataclasses import asdict, dataclass, field
from typing import Callable, Protocol

from tqdm import tqdm

from streamdbg.configs import Settings, settings
from streamdbg.const import PACK_HEADER_MARKER, PAYLOAD_KEY_MARKER, RTP_RECORD_LENGTH_BITS, RTP_RECORD_LENGTH_SIZE
from streamdbg.demux.bit_reader import BitCursor
from streamdbg.demux.errors import InsufficientData, LengthUnderflow, TruncatedHeader, UnexpectedEndOfStream
from streamdbg.schemas import RTPPacketRecord, RTPSessionSummary

logger = logging.getLogger(__name__)

SEQUENCE_MODULO = 1 << 16


@dataclass
class RTPPacket:
    """One decoded RTP header plus its capture framing."""

    version: int
    padding: int
    extension: int
    csrc_count: int
    marker: int
    payload_type: int
    sequence: int
    timestamp: int
    ssrc: int
    csrc: list[int] = field(default_factory=list)
    header_length: int = 0  # RTP header bytes, CSRC list included
    declared_length: int = 0  # record_length field: header + payload
    record_offset: int = 0  # Offset of the record_length field in the capture

    @property
    def payload_length(self) -> int:
        return self.declared_length - self.header_length

    @property
    def record_size(self) -> int:
        """Total record bytes including the length prefix."""
        return RTP_RECORD_LENGTH_SIZE + self.declared_length

    def to_record(self) -> RTPPacketRecord:
        return RTPPacketRecord(
            padding=self.padding,
            extension=self.extension,
            csrc_count=self.csrc_count,
            marker=self.marker,
            payload_type=self.payload_type,
            sequence=self.sequence,
            timestamp=self.timestamp,
            ssrc=self.ssrc,
            declared_length=self.declared_length,
        )


@dataclass
class StreamIdentity:
    """Identity and sequence state of the tracked RTP stream."""

    ssrc: int | None = None
    payload_type: int | None = None
    first_sequence: int | None = None
    last_sequence: int | None = None
    packet_count: int = 0
    accepted_count: int = 0
    rejected_count: int = 0
    discontinuity_count: int = 0
    have_key: bool = False
    psm_offset: int | None = None  # Absolute offset of the latest 0x000001BB seen


class RecordForwarder(Protocol):
    def forward(self, record: bytes) -> None: ...


class RTPDecoder:
    """
    Pull-based RTP capture decoder.

    Usage:
        decoder = RTPDecoder(capture, on_payload=ps_stream.extend)
        identity = decoder.decode_packets()
    """

    def __init__(
        self,
        buffer: bytes,
        on_payload: Callable[[bytes], None] | None = None,
        on_record: Callable[[RTPPacketRecord], None] | None = None,
        forwarder: RecordForwarder | None = None,
        config: Settings | None = None,
    ) -> None:
        self._config = config or settings
        self.buffer = buffer
        self.cursor = BitCursor(buffer)
        self.identity = StreamIdentity()
        self.on_payload = on_payload
        self.on_record = on_record
        self.forwarder = forwarder
        self.payload_bytes = 0
        self.discarded_bytes = 0
        self.forwarded_count = 0
        self._unit_level = logging.INFO if self._config.verbose else logging.DEBUG

    def decode_next(self) -> RTPPacket:
        """Decode the record length and RTP header of the next record."""
        cursor = self.cursor
        record_offset = cursor.byte_position
        try:
            declared_length = cursor.read(RTP_RECORD_LENGTH_BITS)
            header_start = cursor.position
            version = cursor.read(2)
            padding = cursor.read(1)
            extension = cursor.read(1)
            csrc_count = cursor.read(4)
            marker = cursor.read(1)
            payload_type = cursor.read(7)
            sequence = cursor.read(16)
            timestamp = cursor.read(32)
            ssrc = cursor.read(32)
            csrc = [cursor.read(32) for _ in range(csrc_count)]
        except InsufficientData as e:
            logger.error("[rtp] Record at %d ends inside its header", record_offset)
            raise TruncatedHeader(f"RTP record at {record_offset} ends inside its header", record_offset) from e

        self.identity.packet_count += 1
        return RTPPacket(
            version=version,
            padding=padding,
            extension=extension,
            csrc_count=csrc_count,
            marker=marker,
            payload_type=payload_type,
            sequence=sequence,
            timestamp=timestamp,
            ssrc=ssrc,
            csrc=csrc,
            header_length=(cursor.position - header_start) // 8,
            declared_length=declared_length,
            record_offset=record_offset,
        )

    def validate(self, packet: RTPPacket) -> bool:
        """
        Check a packet against the tracked stream.

        Padding/extension packets and packets from a foreign SSRC or payload
        type are rejected. Sequence gaps are logged but accepted, and the gap
        becomes the new baseline.
        """
        identity = self.identity
        if packet.padding:
            logger.warning(
                "[rtp] Padding not supported, dropping packet %d seq=%d", identity.packet_count, packet.sequence
            )
            return self._reject()
        if packet.extension:
            logger.warning(
                "[rtp] Header extension not supported, dropping packet %d seq=%d",
                identity.packet_count,
                packet.sequence,
            )
            return self._reject()

        if identity.ssrc is None:
            identity.ssrc = packet.ssrc
        elif packet.ssrc != identity.ssrc:
            logger.warning(
                "[rtp] SSRC mismatch: stream=%d packet=%d pos=%d packet=%d seq=%d",
                identity.ssrc,
                packet.ssrc,
                packet.record_offset,
                identity.packet_count,
                packet.sequence,
            )
            return self._reject()

        if identity.payload_type is None:
            identity.payload_type = packet.payload_type
        elif packet.payload_type != identity.payload_type:
            logger.warning(
                "[rtp] Payload type mismatch: stream=%d packet=%d seq=%d",
                identity.payload_type,
                packet.payload_type,
                packet.sequence,
            )
            return self._reject()

        if identity.first_sequence is None:
            logger.info("[rtp] First packet seq=%d", packet.sequence)
            identity.first_sequence = packet.sequence
        elif (identity.last_sequence + 1) % SEQUENCE_MODULO != packet.sequence:
            logger.warning(
                "[rtp] Sequence discontinuity: last=%d current=%d packet=%d",
                identity.last_sequence,
                packet.sequence,
                identity.packet_count,
            )
            identity.discontinuity_count += 1
        identity.last_sequence = packet.sequence
        identity.accepted_count += 1
        return True

    def _reject(self) -> bool:
        self.identity.rejected_count += 1
        return False

    def skip_invalid(self, packet: RTPPacket) -> None:
        """Skip the payload of a rejected packet, trusting its record length."""
        self._check_length(packet)
        try:
            self.cursor.skip(packet.payload_length * 8)
        except InsufficientData as e:
            logger.error(
                "[rtp] Cannot skip %d bytes (record %d, header %d) at %d",
                packet.payload_length,
                packet.declared_length,
                packet.header_length,
                self.cursor.byte_position,
            )
            raise UnexpectedEndOfStream(
                f"rejected RTP record at {packet.record_offset} runs past buffer end", packet.record_offset
            ) from e

    def accept(self, packet: RTPPacket) -> bytes:
        """Consume the payload of an accepted packet and hand it to the sinks."""
        self._check_length(packet)
        try:
            payload = self.cursor.read_bytes(packet.payload_length)
        except InsufficientData as e:
            logger.error("[rtp] Payload of %d bytes runs past buffer end", packet.payload_length)
            raise UnexpectedEndOfStream(
                f"RTP payload at {packet.record_offset} runs past buffer end", packet.record_offset
            ) from e

        logger.log(
            self._unit_level,
            "[rtp] seq=%d ts=%d pt=%d marker=%d len=%d",
            packet.sequence,
            packet.timestamp,
            packet.payload_type,
            packet.marker,
            packet.declared_length,
        )
        if self.on_record is not None:
            self.on_record(packet.to_record())
        self._handle_payload(packet, payload)
        if self.forwarder is not None:
            start = packet.record_offset
            self.forwarder.forward(self.buffer[start : start + packet.record_size])
            self.forwarded_count += 1
        return payload

    def _check_length(self, packet: RTPPacket) -> None:
        if packet.declared_length < packet.header_length:
            logger.error(
                "[rtp] Record length %d < header length %d, packet %d",
                packet.declared_length,
                packet.header_length,
                self.identity.packet_count,
            )
            raise LengthUnderflow(
                f"record length {packet.declared_length} shorter than header {packet.header_length}",
                packet.record_offset,
            )

    def _handle_payload(self, packet: RTPPacket, payload: bytes) -> None:
        identity = self.identity
        payload_offset = packet.record_offset + RTP_RECORD_LENGTH_SIZE + packet.header_length
        key_pos = payload.find(PAYLOAD_KEY_MARKER)
        if key_pos >= 0:
            identity.psm_offset = payload_offset + key_pos

        if not identity.have_key:
            if key_pos < 0:
                self.discarded_bytes += len(payload)
                return
            identity.have_key = True
            pack_pos = payload.find(PACK_HEADER_MARKER, 0, key_pos)
            start = pack_pos if pack_pos >= 0 else key_pos
            logger.info(
                "[rtp] Stream key at %d (seq=%d), forwarding payload from %d",
                identity.psm_offset,
                packet.sequence,
                payload_offset + start,
            )
            self.discarded_bytes += start
            payload = payload[start:]

        self.payload_bytes += len(payload)
        if self.on_payload is not None:
            self.on_payload(payload)

    def iter_packets(self) -> Iterator[tuple[RTPPacket, bool]]:
        """Yield (packet, accepted) for every record until the buffer is exhausted."""
        while self.cursor.remaining > 0:
            packet = self.decode_next()
            if self.validate(packet):
                self.accept(packet)
                yield packet, True
            else:
                self.skip_invalid(packet)
                yield packet, False

    def decode_packets(self) -> StreamIdentity:
        with tqdm(
            total=self.cursor.size,
            unit="B",
            unit_scale=True,
            unit_divisor=1024,
            desc="Parsing",
            ncols=100,
            disable=not self._config.show_progress,
        ) as progress_bar:
            consumed = self.cursor.byte_position
            for _ in self.iter_packets():
                position = self.cursor.byte_position
                progress_bar.update(position - consumed)
                consumed = position
        return self.identity

    def summary(self) -> RTPSessionSummary:
        return RTPSessionSummary(
            **asdict(self.identity),
            payload_bytes=self.payload_bytes,
            forwarded_count=self.forwarded_count,
            bytes_consumed=self.cursor.byte_position,
            buffer_size=self.cursor.size,
        )
