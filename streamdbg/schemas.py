from typing import Dict, Literal

from pydantic import BaseModel, Field


class RTPPacketRecord(BaseModel):
    """Diagnostic row written for every accepted RTP packet."""

    padding: int = Field(..., description="P flag.")
    extension: int = Field(..., description="X flag.")
    csrc_count: int = Field(..., description="CC field.")
    marker: int = Field(..., description="M flag.")
    payload_type: int = Field(..., description="PT field.")
    sequence: int = Field(..., description="RTP sequence number.")
    timestamp: int = Field(..., description="RTP timestamp.")
    ssrc: int = Field(..., description="Synchronization source identifier.")
    declared_length: int = Field(..., description="Capture record length (header + payload).")

    def as_csv_row(self) -> str:
        return ", ".join(
            str(v)
            for v in (
                self.padding,
                self.extension,
                self.csrc_count,
                self.marker,
                self.payload_type,
                self.sequence,
                self.timestamp,
                self.ssrc,
                self.declared_length,
            )
        )


class PSSessionSummary(BaseModel):
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
    pack_header: Dict[str, int] = Field(default_factory=dict, description="Last decoded pack header fields.")
    bytes_consumed: int = 0
    buffer_size: int = 0
    completed_by: Literal["dump_complete"] | None = None


class RTPSessionSummary(BaseModel):
    ssrc: int | None = None
    payload_type: int | None = None
    first_sequence: int | None = None
    last_sequence: int | None = None
    packet_count: int = 0
    accepted_count: int = 0
    rejected_count: int = 0
    discontinuity_count: int = 0
    have_key: bool = False
    psm_offset: int | None = None
    payload_bytes: int = Field(0, description="Bytes forwarded to the reconstructed PS stream.")
    forwarded_count: int = 0
    bytes_consumed: int = 0
    buffer_size: int = 0
    completed_by: Literal["forward_complete"] | None = None
    program_stream: PSSessionSummary | None = None


class PacketMatch(BaseModel):
    """First RTP record containing a searched byte pattern."""

    sequence: int
    timestamp: int
    payload_type: int
    declared_length: int
    first_sequence: int | None
    sequence_offset: int = Field(..., description="Packets since the first accepted sequence number.")
    media_type: Literal["audio", "video", "unknown"]
    record_offset: int = Field(..., description="Byte offset of the record in the capture.")
