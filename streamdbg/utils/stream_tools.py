import logging

from streamdbg.configs import Settings
from streamdbg.const import AUDIO_PES_MARKER, FIRST_FRAME_TERMINATOR, VIDEO_PES_MARKER
from streamdbg.demux.rtp_parser import RTPDecoder
from streamdbg.schemas import PacketMatch

logger = logging.getLogger(__name__)


def search_packets(buffer: bytes, needle: bytes, config: Settings | None = None) -> PacketMatch | None:
    """
    Find the first accepted RTP record whose bytes contain needle.

    The record is searched verbatim, length prefix included. The media type
    reports video if the record carries a video PES start code, otherwise
    audio if it carries an audio one.
    """
    if not needle:
        raise ValueError("search pattern must not be empty")

    decoder = RTPDecoder(buffer, config=config)
    for packet, accepted in decoder.iter_packets():
        if not accepted:
            continue
        record = buffer[packet.record_offset : packet.record_offset + packet.record_size]
        if needle not in record:
            continue

        media_type = "unknown"
        if AUDIO_PES_MARKER in record:
            media_type = "audio"
        if VIDEO_PES_MARKER in record:
            media_type = "video"

        first = decoder.identity.first_sequence
        match = PacketMatch(
            sequence=packet.sequence,
            timestamp=packet.timestamp,
            payload_type=packet.payload_type,
            declared_length=packet.declared_length,
            first_sequence=first,
            sequence_offset=(packet.sequence - first) % (1 << 16),
            media_type=media_type,
            record_offset=packet.record_offset,
        )
        logger.info("[search] Pattern found in seq=%d at %d", packet.sequence, packet.record_offset)
        return match
    return None


def extract_first_frame(data: bytes) -> bytes:
    """
    Cut the first access unit out of an Annex B H.264 stream.

    Everything before the first non-IDR slice (00 00 00 01 41) found at or
    after offset 4 is returned; the whole input if there is none.
    """
    end = data.find(FIRST_FRAME_TERMINATOR, 4)
    if end < 0:
        return bytes(data)
    return bytes(data[:end])
