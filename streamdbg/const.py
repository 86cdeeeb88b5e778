# ============================================================================
# MPEG Program Stream start codes
# ============================================================================

START_CODE_PREFIX = b"\x00\x00\x01"
START_CODE_SIZE = 4

START_CODE_PACK = 0x000001BA
START_CODE_SYSTEM_HEADER = 0x000001BB
START_CODE_PROGRAM_STREAM_MAP = 0x000001BC

# Elementary stream id ranges (last byte of the start code)
VIDEO_STREAM_ID_MIN = 0xE0
VIDEO_STREAM_ID_MAX = 0xEF
AUDIO_STREAM_ID_MIN = 0xC0
AUDIO_STREAM_ID_MAX = 0xDF

# Marker searched in RTP payloads before the container becomes parseable
PAYLOAD_KEY_MARKER = b"\x00\x00\x01\xbb"
PACK_HEADER_MARKER = b"\x00\x00\x01\xba"

AUDIO_PES_MARKER = b"\x00\x00\x01\xc0"
VIDEO_PES_MARKER = b"\x00\x00\x01\xe0"

# (field name, width in bits), in wire order
PACK_HEADER_FIELDS = (
    ("fixed", 2),
    ("system_clock_reference_base1", 3),
    ("marker_bit1", 1),
    ("system_clock_reference_base2", 15),
    ("marker_bit2", 1),
    ("system_clock_reference_base3", 15),
    ("marker_bit3", 1),
    ("system_clock_reference_extension", 9),
    ("marker_bit4", 1),
    ("program_mux_rate", 22),
    ("marker_bit5", 1),
    ("marker_bit6", 1),
    ("reserved", 5),
    ("pack_stuffing_length", 3),
)

# PSM trailer
PSM_CRC_SIZE = 4

# ============================================================================
# H.264 Annex B
# ============================================================================

ANNEXB_START_CODE = b"\x00\x00\x00\x01"
ANNEXB_PREFIX_SIZE = 4

# Full NAL header bytes (nal_ref_idc included) recognised by the classifier
NAL_HEADER_SPS = 0x67
NAL_HEADER_PPS = 0x68
NAL_HEADER_IDR = 0x65
NAL_HEADER_P_FRAME = 0x61

# Non-IDR slice header that ends the first access unit of a dump
FIRST_FRAME_TERMINATOR = ANNEXB_START_CODE + b"\x41"

# ============================================================================
# RTP capture framing
# ============================================================================

RTP_RECORD_LENGTH_BITS = 16
RTP_RECORD_LENGTH_SIZE = 2
RTP_FIXED_HEADER_SIZE = 12
RTP_CSRC_SIZE = 4

CSV_HEADER = "P, X, CC, M, PT, SeqNum, timestamp, SSRC, RTPLen"
