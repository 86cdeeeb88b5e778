"""
Decode sessions.

A session owns the input buffer, the sinks and the decoder state for one
pass. Sinks are opened before the decode loop and released on every exit
path (normal end, DumpComplete/ForwardComplete, or a fatal DemuxError, which
is re-raised once the sinks are closed).
"""

import logging
from contextlib import ExitStack

from streamdbg.configs import Settings, settings
from streamdbg.demux.errors import DemuxError, DumpComplete, ForwardComplete
from streamdbg.demux.frame_classifier import FrameClassifier
from streamdbg.demux.ps_parser import PSDecoder
from streamdbg.demux.rtp_parser import RTPDecoder
from streamdbg.schemas import PSSessionSummary, RTPSessionSummary
from streamdbg.utils.sinks import CsvRecordSink, FileSink, TCPForwarder

logger = logging.getLogger(__name__)


def decode_program_stream(buffer: bytes, config: Settings | None = None) -> PSSessionSummary:
    """Demux a raw PS buffer into the configured elementary stream sinks."""
    config = config or settings
    logger.info("[session] Decoding program stream, %d bytes", len(buffer))

    with ExitStack() as stack:
        video_sink = stack.enter_context(FileSink(config.output_video_file)) if config.dump_video else None
        audio_sink = stack.enter_context(FileSink(config.output_audio_file)) if config.dump_audio else None
        classifier = FrameClassifier(
            video_sink=video_sink,
            audio_sink=audio_sink,
            dump_video_frame_count=config.dump_video_frame_count,
            write_recovered_frames=config.write_recovered_frames,
            verbose=config.verbose,
        )
        decoder = PSDecoder(buffer, classifier, config=config)
        completed_by = None
        try:
            decoder.decode_packets()
        except DumpComplete:
            completed_by = "dump_complete"
        except DemuxError as e:
            logger.error("[session] Program stream decode failed at %s: %s", e.position, e)
            raise

    summary = decoder.summary()
    summary.completed_by = completed_by
    return summary


def decode_rtp_capture(buffer: bytes, config: Settings | None = None) -> RTPSessionSummary:
    """
    Decode an RTP capture.

    The reconstructed PS payload is written to ``output_file`` when set and,
    with ``demux_rtp_payload``, decoded by a second independent PS pass.
    """
    config = config or settings
    logger.info("[session] Decoding RTP capture, %d bytes", len(buffer))
    ps_stream = bytearray()

    with ExitStack() as stack:
        output = stack.enter_context(FileSink(config.output_file)) if config.output_file else None
        csv_sink = stack.enter_context(CsvRecordSink(config.csv_file)) if config.csv_file else None
        forwarder = None
        if config.remote_addr:
            forwarder = stack.enter_context(
                TCPForwarder(
                    config.remote_addr,
                    limit=config.send_rtp_count,
                    interval_ms=config.forward_interval_ms,
                    timeout=config.forward_connect_timeout,
                )
            )

        def on_payload(payload: bytes) -> None:
            if output is not None:
                output.write(payload)
            if config.demux_rtp_payload:
                ps_stream.extend(payload)

        decoder = RTPDecoder(
            buffer,
            on_payload=on_payload,
            on_record=csv_sink.write_record if csv_sink is not None else None,
            forwarder=forwarder,
            config=config,
        )
        completed_by = None
        try:
            decoder.decode_packets()
        except ForwardComplete:
            completed_by = "forward_complete"
        except DemuxError as e:
            logger.error("[session] RTP decode failed at %s: %s", e.position, e)
            raise

    summary = decoder.summary()
    summary.completed_by = completed_by
    logger.info(
        "[session] ssrc=%s pt=%s first seq=%s last seq=%s packets=%d",
        summary.ssrc,
        summary.payload_type,
        summary.first_sequence,
        summary.last_sequence,
        summary.packet_count,
    )

    if config.demux_rtp_payload and ps_stream:
        summary.program_stream = decode_program_stream(bytes(ps_stream), config)
    return summary
