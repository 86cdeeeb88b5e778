import pytest

from streamdbg.configs import Settings
from streamdbg.demux.errors import (
    MalformedProgramStreamMap,
    TruncatedHeader,
    UnexpectedEndOfStream,
    UnknownStartCode,
)
from streamdbg.demux.frame_classifier import FrameClassifier, FrameKind
from streamdbg.demux.ps_parser import (
    PSDecoder,
    StartCodeKind,
    classify_start_code,
    find_next_start_code,
)
from tests.builders import (
    IDR_PAYLOAD,
    P_PAYLOAD,
    SPS_PAYLOAD,
    START_AUDIO,
    START_VIDEO,
    ListSink,
    pack_header,
    pes,
    program_stream_map,
    system_header,
)

CONFIG = Settings(_env_file=None, print_pack_header=True, print_psm=True, dump_pes_start_bytes=True)


def _decoder(data: bytes, **classifier_kwargs) -> PSDecoder:
    return PSDecoder(data, FrameClassifier(**classifier_kwargs), config=CONFIG)


@pytest.mark.parametrize(
    "code, kind",
    [
        (0x000001BA, StartCodeKind.PACK),
        (0x000001BB, StartCodeKind.SYSTEM_HEADER),
        (0x000001BC, StartCodeKind.PROGRAM_STREAM_MAP),
        (0x000001E0, StartCodeKind.VIDEO),
        (0x000001EF, StartCodeKind.VIDEO),
        (0x000001C0, StartCodeKind.AUDIO),
        (0x000001DF, StartCodeKind.AUDIO),
        (0x000001B9, None),
        (0x000001BD, None),
        (0x000001F0, None),
        (0x000002E0, None),
    ],
)
def test_classify_start_code(code, kind):
    assert classify_start_code(code) is kind


def test_find_next_start_code():
    data = b"\x00\x00\x01\xb9\x00\x00\x00\x01\x67" + START_AUDIO + b"\x00"
    assert find_next_start_code(data, 0) == 9
    assert find_next_start_code(data, 10) is None
    assert find_next_start_code(data, 0, end=12) is None
    assert find_next_start_code(b"\x00\x00\x01", 0) is None


def test_pack_header_with_stuffing_consumes_declared_bits():
    data = pack_header(stuffing_length=3) + system_header()
    decoder = _decoder(data)
    decoder.cursor.read(32)
    header = decoder.decode_pack_header()

    assert decoder.cursor.position == 32 + 80 + 24
    assert len(header) == 14
    assert header["pack_stuffing_length"] == 3
    assert header["program_mux_rate"] == 0x3FFF

    decoder.decode_packets()
    assert decoder.state.system_header_count == 1
    assert decoder.cursor.remaining == 0


def test_truncated_pack_header():
    with pytest.raises(TruncatedHeader):
        _decoder(pack_header()[:9]).decode_packets()
    with pytest.raises(TruncatedHeader):
        _decoder(pack_header(stuffing_length=2)[:-1]).decode_packets()


def test_program_stream_map_learns_stream_types():
    data = pack_header() + program_stream_map(streams=((0x1B, 0xE0), (0x90, 0xC0)), program_info=b"\x0a\x04abcd")
    decoder = _decoder(data)
    decoder.decode_packets()

    assert decoder.state.video_stream_type == 0x1B
    assert decoder.state.audio_stream_type == 0x90
    assert decoder.state.program_stream_map_count == 1
    assert decoder.cursor.remaining == 0


def test_program_stream_map_length_mismatch_is_fatal():
    psm = program_stream_map()
    declared = int.from_bytes(psm[4:6], "big")
    data = program_stream_map(map_length=declared + 1) + b"\x00"

    with pytest.raises(MalformedProgramStreamMap) as exc_info:
        _decoder(data).decode_packets()
    assert exc_info.value.remainder == 5
    assert exc_info.value.position == 0


def test_program_stream_map_descriptor_overrun_is_fatal():
    data = program_stream_map(streams=((0x1B, 0xE0), (0x0F, 0xC0)), es_map_length=6)
    with pytest.raises(MalformedProgramStreamMap):
        _decoder(data).decode_packets()


def test_unknown_start_code_is_fatal():
    data = pack_header() + b"\x00\x00\x01\xb9"
    with pytest.raises(UnknownStartCode) as exc_info:
        _decoder(data).decode_packets()
    assert exc_info.value.start_code == 0x000001B9
    assert exc_info.value.position == 14


def test_partial_trailing_start_code():
    with pytest.raises(UnexpectedEndOfStream):
        _decoder(pack_header() + b"\x00\x00").decode_packets()


def test_clean_stream_consumes_whole_buffer():
    video = ListSink()
    audio = ListSink()
    data = (
        pack_header()
        + system_header()
        + program_stream_map()
        + pes(START_VIDEO, SPS_PAYLOAD)
        + pes(START_AUDIO, b"\xff\xf1\x50\x80")
        + pes(START_VIDEO, IDR_PAYLOAD)
    )
    decoder = _decoder(data, video_sink=video, audio_sink=audio)
    decoder.decode_packets()

    assert decoder.cursor.position == len(data) * 8
    assert video.frames == [SPS_PAYLOAD, IDR_PAYLOAD]
    assert audio.frames == [b"\xff\xf1\x50\x80"]
    summary = decoder.summary()
    assert summary.total_video_frames == 2
    assert summary.error_video_frames == 0
    assert summary.total_audio_frames == 1
    assert summary.bytes_consumed == summary.buffer_size == len(data)


def test_sps_then_idr_counts():
    data = pes(START_VIDEO, SPS_PAYLOAD) + pes(START_VIDEO, IDR_PAYLOAD)
    decoder = _decoder(data)
    decoder.decode_packets()
    assert decoder.state.sps_count == 1
    assert decoder.state.i_frame_count == 1


def test_corrupted_video_length_resyncs_to_next_start_code():
    actual_payload = b"\x11" * 6
    corrupted = pes(START_VIDEO, actual_payload, declared_payload=2)
    data = pack_header() + corrupted + pes(START_VIDEO, P_PAYLOAD)
    video = ListSink()
    decoder = _decoder(data, video_sink=video, write_recovered_frames=True)

    decoder.decode_packets()

    state = decoder.state
    assert state.resync_count == 1
    assert state.resync_bytes == 6
    assert state.error_video_frames == 1
    assert state.valid_video_frames == 1
    assert state.total_video_frames == 2
    assert video.frames == [actual_payload, P_PAYLOAD]
    assert decoder.cursor.remaining == 0


def test_corrupted_audio_length_counts_audio_error():
    data = pes(START_AUDIO, b"\x22" * 9, declared_payload=40) + pack_header()
    decoder = _decoder(data)
    decoder.decode_packets()

    assert decoder.state.error_audio_frames == 1
    assert decoder.state.total_audio_frames == 1
    assert decoder.state.error_video_frames == 0
    assert decoder.state.pack_count == 1


def test_resync_never_moves_backwards():
    trailer = pes(START_AUDIO, b"\x01")
    data = pes(START_VIDEO, b"\x00\x00\x01\x09\x10" * 3, declared_payload=1) + trailer
    decoder = _decoder(data)
    decoder.cursor.read(32)

    frame = decoder.decode_pes(FrameKind.VIDEO)

    assert frame.valid is False
    assert decoder.cursor.byte_position >= frame.offset
    assert decoder.cursor.byte_position == len(data) - len(trailer)
    assert frame.data == b"\x00\x00\x01\x09\x10" * 3


def test_resync_without_following_start_code_is_fatal():
    data = pack_header() + pes(START_VIDEO, b"\x33" * 20, declared_payload=5)
    with pytest.raises(UnexpectedEndOfStream):
        _decoder(data).decode_packets()


def test_payload_ending_at_buffer_end_is_clean():
    data = pes(START_AUDIO, b"\x44" * 7)
    decoder = _decoder(data)
    decoder.decode_packets()
    assert decoder.state.error_audio_frames == 0
    assert decoder.cursor.remaining == 0


def test_negative_payload_length_resyncs():
    # PES_packet_length smaller than its own header
    data = b"\x00\x00\x01\xe0\x00\x02\x80\x80\x05" + b"\x00" * 5 + b"\x55\x55" + pack_header()
    decoder = _decoder(data)
    decoder.decode_packets()
    assert decoder.state.error_video_frames == 1
    assert decoder.state.resync_bytes == 2


def test_pack_header_mapping_is_replaced_by_latest():
    data = pack_header(mux_rate=1) + pack_header(mux_rate=2, stuffing_length=1)
    decoder = _decoder(data)
    decoder.decode_packets()
    assert decoder.state.pack_count == 2
    assert decoder.state.pack_header["program_mux_rate"] == 2
