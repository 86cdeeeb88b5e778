"""Builders for synthetic RTP capture records and program stream units."""

import struct

from streamdbg.const import PACK_HEADER_FIELDS

START_PACK = b"\x00\x00\x01\xba"
START_SYSTEM = b"\x00\x00\x01\xbb"
START_PSM = b"\x00\x00\x01\xbc"
START_VIDEO = b"\x00\x00\x01\xe0"
START_AUDIO = b"\x00\x00\x01\xc0"

SPS_PAYLOAD = b"\x00\x00\x00\x01\x67\x42\x00\x1f"
PPS_PAYLOAD = b"\x00\x00\x00\x01\x68\xce\x3c\x80"
IDR_PAYLOAD = b"\x00\x00\x00\x01\x65\x88\x84\x00\x33"
P_PAYLOAD = b"\x00\x00\x00\x01\x61\x9a\x00\x10"

PES_HEADER_DATA = b"\x21\x00\x01\x00\x01"  # PTS only


def rtp_record(
    seq: int,
    payload: bytes = b"",
    ssrc: int = 0x11223344,
    payload_type: int = 96,
    timestamp: int = 9000,
    marker: int = 0,
    padding: int = 0,
    extension: int = 0,
    csrc: tuple = (),
    declared_length: int | None = None,
) -> bytes:
    b0 = (2 << 6) | (padding << 5) | (extension << 4) | len(csrc)
    b1 = (marker << 7) | payload_type
    header = struct.pack(">BBHII", b0, b1, seq, timestamp, ssrc)
    header += b"".join(struct.pack(">I", c) for c in csrc)
    length = len(header) + len(payload) if declared_length is None else declared_length
    return struct.pack(">H", length) + header + payload


def pack_header(stuffing_length: int = 0, mux_rate: int = 0x3FFF) -> bytes:
    values = {
        "fixed": 0b01,
        "marker_bit1": 1,
        "marker_bit2": 1,
        "marker_bit3": 1,
        "marker_bit4": 1,
        "program_mux_rate": mux_rate,
        "marker_bit5": 1,
        "marker_bit6": 1,
        "reserved": 0x1F,
        "pack_stuffing_length": stuffing_length,
    }
    bits = 0
    width = 0
    for name, size in PACK_HEADER_FIELDS:
        bits = (bits << size) | values.get(name, 0)
        width += size
    return START_PACK + bits.to_bytes(width // 8, "big") + b"\xff" * stuffing_length


def system_header(body: bytes = b"\x80\x01\x04\xe1\xff\xe0") -> bytes:
    return START_SYSTEM + struct.pack(">H", len(body)) + body


def program_stream_map(
    streams: tuple = ((0x1B, 0xE0), (0x0F, 0xC0)),
    program_info: bytes = b"",
    map_length: int | None = None,
    es_map_length: int | None = None,
) -> bytes:
    es_map = b"".join(bytes([stream_type, stream_id]) + struct.pack(">H", 0) for stream_type, stream_id in streams)
    if es_map_length is None:
        es_map_length = len(es_map)
    body = (
        b"\xe0\xff"
        + struct.pack(">H", len(program_info))
        + program_info
        + struct.pack(">H", es_map_length)
        + es_map
        + b"\xde\xad\xbe\xef"
    )
    length = len(body) if map_length is None else map_length
    return START_PSM + struct.pack(">H", length) + body


def pes(start_code: bytes, payload: bytes, declared_payload: int | None = None) -> bytes:
    """PES packet; declared_payload overrides the payload length written in the header."""
    if declared_payload is None:
        declared_payload = len(payload)
    length = 3 + len(PES_HEADER_DATA) + declared_payload
    return start_code + struct.pack(">H", length) + b"\x80\x80" + bytes([len(PES_HEADER_DATA)]) + PES_HEADER_DATA + payload


class ListSink:
    """In-memory frame sink."""

    def __init__(self):
        self.frames: list[bytes] = []

    def write(self, data: bytes) -> None:
        self.frames.append(bytes(data))
