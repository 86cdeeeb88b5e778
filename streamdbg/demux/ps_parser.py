"""
MPEG Program Stream (PS) pack/PES parser.

Walks a fully-resident PS buffer unit by unit: every unit starts with a
32-bit start code which selects the handler (pack header, system header,
program stream map, video PES, audio PES). The set of start codes is closed;
anything else means the stream is no longer start-code aligned and decoding
stops with UnknownStartCode.

PES payload lengths are cross-checked before the payload is consumed: the
four bytes just past the declared payload must be a known start code (or the
payload must end exactly at the buffer end). When they are not, the declared
length is treated as corrupted and the parser resynchronizes by scanning
forward for the next known start code. The skipped span becomes a recovered
(invalid) frame and is attributed to the matching error counter.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from enum import Enum

from streamdbg.configs import Settings, settings
from streamdbg.const import (
    AUDIO_STREAM_ID_MAX,
    AUDIO_STREAM_ID_MIN,
    PACK_HEADER_FIELDS,
    PSM_CRC_SIZE,
    START_CODE_PACK,
    START_CODE_PREFIX,
    START_CODE_PROGRAM_STREAM_MAP,
    START_CODE_SIZE,
    START_CODE_SYSTEM_HEADER,
    VIDEO_STREAM_ID_MAX,
    VIDEO_STREAM_ID_MIN,
)
from streamdbg.demux.bit_reader import BitCursor
from streamdbg.demux.errors import (
    InsufficientData,
    MalformedProgramStreamMap,
    TruncatedHeader,
    UnexpectedEndOfStream,
    UnknownStartCode,
)
from streamdbg.demux.frame_classifier import ElementaryFrame, FrameClassifier, FrameKind
from streamdbg.schemas import PSSessionSummary

logger = logging.getLogger(__name__)

# Bytes shown when dumping the start of a PES packet
PES_DUMP_BYTES = 16


class StartCodeKind(Enum):
    PACK = "pack"
    SYSTEM_HEADER = "system_header"
    PROGRAM_STREAM_MAP = "program_stream_map"
    VIDEO = "video"
    AUDIO = "audio"


_FIXED_START_CODES = {
    START_CODE_PACK: StartCodeKind.PACK,
    START_CODE_SYSTEM_HEADER: StartCodeKind.SYSTEM_HEADER,
    START_CODE_PROGRAM_STREAM_MAP: StartCodeKind.PROGRAM_STREAM_MAP,
}


def classify_start_code(code: int) -> StartCodeKind | None:
    """Map a 32-bit start code to its unit kind, or None if it is not one we handle."""
    kind = _FIXED_START_CODES.get(code)
    if kind is not None:
        return kind
    if code >> 8 != 0x000001:
        return None
    stream_id = code & 0xFF
    if VIDEO_STREAM_ID_MIN <= stream_id <= VIDEO_STREAM_ID_MAX:
        return StartCodeKind.VIDEO
    if AUDIO_STREAM_ID_MIN <= stream_id <= AUDIO_STREAM_ID_MAX:
        return StartCodeKind.AUDIO
    return None


def is_known_start_code(data: bytes, pos: int) -> bool:
    """True if the four bytes at pos form a start code we handle."""
    if pos < 0 or pos + START_CODE_SIZE > len(data):
        return False
    return classify_start_code(int.from_bytes(data[pos : pos + START_CODE_SIZE], "big")) is not None


def find_next_start_code(data: bytes, start: int, end: int | None = None) -> int | None:
    """
    Find the offset of the next known start code in data[start:end].

    Scans forward only, candidate prefixes are located with bytes.find so each
    byte is examined a bounded number of times.

    Returns:
        Byte offset of the start code, or None if the range holds none.
    """
    end = len(data) if end is None else min(end, len(data))
    pos = max(start, 0)
    while pos + START_CODE_SIZE <= end:
        idx = data.find(START_CODE_PREFIX, pos, end)
        if idx < 0 or idx + START_CODE_SIZE > end:
            return None
        if is_known_start_code(data, idx):
            return idx
        pos = idx + 1
    return None


@dataclass
class PSDecodeState:
    """Mutable per-session state threaded through every PS handler."""

    video_stream_type: int = 0
    audio_stream_type: int = 0
    total_video_frames: int = 0
    error_video_frames: int = 0
    valid_video_frames: int = 0
    total_audio_frames: int = 0
    error_audio_frames: int = 0
    sps_count: int = 0
    pps_count: int = 0
    i_frame_count: int = 0
    error_i_frame_count: int = 0
    p_frame_count: int = 0
    program_stream_map_count: int = 0
    pack_count: int = 0
    system_header_count: int = 0
    resync_count: int = 0
    resync_bytes: int = 0
    written_video_frames: int = 0
    written_audio_frames: int = 0
    pack_header: dict[str, int] = field(default_factory=dict)


class PSDecoder:
    """
    Synchronous PS demuxer over an in-memory buffer.

    Usage:
        decoder = PSDecoder(data, FrameClassifier(video_sink=sink))
        decoder.decode_packets()
        print(decoder.summary().model_dump_json(indent=2))
    """

    def __init__(
        self,
        buffer: bytes,
        classifier: FrameClassifier | None = None,
        config: Settings | None = None,
    ) -> None:
        self._config = config or settings
        self.buffer = buffer
        self.cursor = BitCursor(buffer)
        self.state = PSDecodeState()
        self.classifier = classifier or FrameClassifier(verbose=self._config.verbose)
        self.unit_count = 0
        self._unit_level = logging.INFO if self._config.verbose else logging.DEBUG

    def decode_packets(self) -> PSDecodeState:
        """Decode units until the buffer is exhausted or a fatal error occurs."""
        cursor = self.cursor
        while cursor.remaining > 0:
            unit_start = cursor.byte_position
            try:
                start_code = cursor.read(32)
            except InsufficientData as e:
                logger.error("[ps] %d trailing bytes do not form a start code", cursor.size - unit_start)
                raise UnexpectedEndOfStream(f"partial start code at offset {unit_start}", unit_start) from e

            self.unit_count += 1
            logger.log(
                self._unit_level,
                "[ps] unit %d start_code=0x%08x pos=%d/%d",
                self.unit_count,
                start_code,
                unit_start,
                cursor.size,
            )

            kind = classify_start_code(start_code)
            if kind is None:
                logger.error("[ps] Unknown start code 0x%08x at %d (size %d)", start_code, unit_start, cursor.size)
                raise UnknownStartCode(start_code, unit_start)

            if kind is StartCodeKind.PACK:
                self.decode_pack_header()
            elif kind is StartCodeKind.SYSTEM_HEADER:
                self.decode_system_header()
            elif kind is StartCodeKind.PROGRAM_STREAM_MAP:
                self.decode_program_stream_map()
            elif kind is StartCodeKind.VIDEO:
                self.decode_pes(FrameKind.VIDEO)
            else:
                self.decode_pes(FrameKind.AUDIO)

        return self.state

    # ------------------------------------------------------------------
    # Unit handlers (cursor sits just past the 4-byte start code)
    # ------------------------------------------------------------------

    def decode_pack_header(self) -> dict[str, int]:
        self.state.pack_count += 1
        header = {name: self._read(bits, f"pack header field {name}") for name, bits in PACK_HEADER_FIELDS}
        self.state.pack_header = header
        self._skip(header["pack_stuffing_length"], "pack stuffing", TruncatedHeader)
        if self._config.print_pack_header:
            logger.info("[ps] pack header:\n%s", json.dumps(header, indent=2))
        return header

    def decode_system_header(self) -> None:
        length = self._read(16, "system header length")
        self.state.system_header_count += 1
        if self._config.print_system_header:
            logger.info("[ps] system header: header_length=%d", length)
        self._skip(length, "system header")

    def decode_program_stream_map(self) -> None:
        """
        Decode a Program Stream Map and learn the elementary stream types.

        The declared map length must be accounted for exactly: after the
        version, program info and elementary stream map are subtracted, 4
        bytes (the CRC) must remain.
        """
        map_start = self.cursor.byte_position - START_CODE_SIZE
        self.state.program_stream_map_count += 1

        map_length = self._read(16, "program_stream_map_length")
        self._read(16, "program stream map version")
        remaining = map_length - 2

        info_length = self._read(16, "program_stream_info_length")
        self._skip(info_length, "program stream info")
        remaining -= info_length + 2

        es_map_length = self._read(16, "elementary_stream_map_length")
        remaining -= es_map_length + 2

        if self._config.print_psm:
            logger.info(
                "[ps] program stream map at %d: map_length=%d info_length=%d es_map_length=%d",
                map_start,
                map_length,
                info_length,
                es_map_length,
            )

        overrun = self._decode_elementary_stream_map(es_map_length)
        remaining -= overrun
        if overrun or remaining != PSM_CRC_SIZE:
            logger.error(
                "[ps] Program stream map at %d: length accounting left %d bytes (expected %d)",
                map_start,
                remaining,
                PSM_CRC_SIZE,
            )
            raise MalformedProgramStreamMap(remaining, map_start)
        self._skip(PSM_CRC_SIZE, "program stream map CRC")

    def _decode_elementary_stream_map(self, length: int) -> int:
        """Decode descriptors; returns how many bytes the loop ran past its declared length."""
        left = length
        while left > 0:
            stream_type = self._read(8, "stream_type")
            stream_id = self._read(8, "elementary_stream_id")
            info_length = self._read(16, "elementary_stream_info_length")
            self._skip(info_length, "elementary stream info")
            left -= 4 + info_length

            if VIDEO_STREAM_ID_MIN <= stream_id <= VIDEO_STREAM_ID_MAX:
                self.state.video_stream_type = stream_type
            elif AUDIO_STREAM_ID_MIN <= stream_id <= AUDIO_STREAM_ID_MAX:
                self.state.audio_stream_type = stream_type

            if self._config.print_psm:
                logger.info(
                    "[ps]   stream_type=0x%x stream_id=0x%x info_length=%d",
                    stream_type,
                    stream_id,
                    info_length,
                )
        return -left

    def decode_pes(self, kind: FrameKind) -> ElementaryFrame:
        cursor = self.cursor
        pes_start = cursor.byte_position - START_CODE_SIZE
        if self._config.dump_pes_start_bytes:
            logger.info("[ps] PES at %d: %s", pes_start, self._hex_at(pes_start))

        payload_length = self._read(16, "PES_packet_length")
        self._read(16, "PES flags")
        payload_length -= 2
        header_data_length = self._read(8, "PES_header_data_length")
        payload_length -= 1
        self._skip(header_data_length, "PES header data", TruncatedHeader)
        payload_length -= header_data_length

        logger.log(
            self._unit_level,
            "[ps] %s PES at %d: payload_length=%d header_data_length=%d",
            kind.value,
            pes_start,
            payload_length,
            header_data_length,
        )

        payload_start = cursor.byte_position
        if self.payload_length_valid(payload_start, payload_length):
            data = self._read_payload(payload_length)
            frame = ElementaryFrame(kind, data, valid=True, offset=payload_start)
        else:
            frame = self._resync(kind, payload_start, payload_length, pes_start)

        self.classifier.handle(frame, self.state)
        return frame

    # ------------------------------------------------------------------
    # Length cross-check and resynchronization
    # ------------------------------------------------------------------

    def payload_length_valid(self, payload_start: int, payload_length: int) -> bool:
        """Check that a declared payload ends on a known start code or exactly at the buffer end."""
        if payload_length < 0:
            return False
        end = payload_start + payload_length
        if end == len(self.buffer):
            return True
        return is_known_start_code(self.buffer, end)

    def _resync(self, kind: FrameKind, payload_start: int, payload_length: int, pes_start: int) -> ElementaryFrame:
        next_pos = find_next_start_code(self.buffer, payload_start)
        if next_pos is None:
            logger.error(
                "[ps] No start code after corrupted %s PES at %d, %d bytes left",
                kind.value,
                pes_start,
                len(self.buffer) - payload_start,
            )
            raise UnexpectedEndOfStream(f"no start code after corrupted {kind.value} PES at {pes_start}", pes_start)

        skipped = next_pos - payload_start
        logger.warning(
            "[ps] %s PES at %d: payload length %d inconsistent, actual %d, resync to %d",
            kind.value,
            pes_start,
            payload_length,
            skipped,
            next_pos,
        )
        logger.warning("[ps] PES start dump: %s", self._hex_at(pes_start))

        data = self.buffer[payload_start:next_pos]
        self.cursor.seek_byte(next_pos)
        self.state.resync_count += 1
        self.state.resync_bytes += skipped
        return ElementaryFrame(kind, bytes(data), valid=False, offset=payload_start)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _read(self, bits: int, what: str) -> int:
        try:
            return self.cursor.read(bits)
        except InsufficientData as e:
            raise TruncatedHeader(f"buffer ended while reading {what}", self.cursor.byte_position) from e

    def _skip(self, nbytes: int, what: str, error: type = UnexpectedEndOfStream) -> None:
        try:
            self.cursor.skip(nbytes * 8)
        except InsufficientData as e:
            raise error(f"buffer ended inside {what} ({nbytes} bytes)", self.cursor.byte_position) from e

    def _read_payload(self, nbytes: int) -> bytes:
        try:
            return self.cursor.read_bytes(nbytes)
        except InsufficientData as e:
            raise UnexpectedEndOfStream(f"payload of {nbytes} bytes runs past buffer end", self.cursor.byte_position) from e

    def _hex_at(self, pos: int) -> str:
        return self.buffer[pos : pos + PES_DUMP_BYTES].hex(" ").upper()

    def summary(self) -> PSSessionSummary:
        return PSSessionSummary(
            **asdict(self.state),
            bytes_consumed=self.cursor.byte_position,
            buffer_size=self.cursor.size,
        )
