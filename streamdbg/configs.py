from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    log_level: str = "INFO"  # The logging level to use.
    verbose: bool = False  # Log every decoded unit at INFO instead of DEBUG.
    show_progress: bool = False  # Whether to show a tqdm progress bar while parsing RTP captures.

    # RTP capture outputs
    output_file: str | None = None  # Reconstructed PS stream extracted from RTP payloads.
    csv_file: str | None = None  # Diagnostic CSV, one row per accepted RTP packet.
    remote_addr: str | None = None  # host:port to forward verbatim RTP records to over TCP.
    send_rtp_count: int = Field(100, description="Stop forwarding after this many RTP records.")
    forward_interval_ms: int = Field(5, description="Delay between forwarded RTP records in milliseconds.")
    forward_connect_timeout: float = Field(10.0, description="Timeout for the forwarding connection in seconds.")
    demux_rtp_payload: bool = False  # Run a PS pass over the payload reconstructed from RTP.

    # Program stream outputs
    dump_video: bool = False  # Whether to write video elementary stream frames.
    dump_audio: bool = False  # Whether to write audio elementary stream frames.
    output_video_file: str = "./output.video"  # Raw video elementary stream sink.
    output_audio_file: str = "./output.audio"  # Raw audio elementary stream sink.
    dump_video_frame_count: int = Field(1, description="Stop after writing this many video frames, 0 for no limit.")
    write_recovered_frames: bool = False  # Also write frames recovered by resynchronization.

    # Diagnostics
    print_pack_header: bool = False  # Log every pack header field mapping as JSON.
    print_system_header: bool = False  # Log system header lengths.
    print_psm: bool = False  # Log program stream map descriptors.
    dump_pes_start_bytes: bool = False  # Hex dump the first bytes of every PES packet.

    class Config:
        env_file = ".env"
        extra = "ignore"


settings = Settings()
