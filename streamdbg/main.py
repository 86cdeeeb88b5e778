import argparse
import logging
import sys
from pathlib import Path

from streamdbg.configs import Settings, settings
from streamdbg.demux.errors import DemuxError
from streamdbg.session import decode_program_stream, decode_rtp_capture
from streamdbg.utils.stream_tools import extract_first_frame, search_packets

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="streamdbg", description="Extract elementary streams from RTP/PS captures.")
    parser.add_argument("--verbose", action="store_true", default=None, help="Log every decoded unit.")
    parser.add_argument("--log-level", default=None, help="Logging level (default from settings).")
    sub = parser.add_subparsers(dest="command", required=True)

    rtp = sub.add_parser("rtp", help="Decode an RTP capture carrying a program stream.")
    rtp.add_argument("file", help="Input RTP capture.")
    rtp.add_argument("--output-file", help="Write the reconstructed PS stream here.")
    rtp.add_argument("--csv-file", help="Write one diagnostic row per accepted packet.")
    rtp.add_argument("--remote-addr", help="Forward verbatim records to host:port over TCP.")
    rtp.add_argument("--send-rtp-count", type=int, help="Stop after forwarding this many records.")
    rtp.add_argument("--show-progress", action="store_true", default=None, help="Show a progress line.")
    rtp.add_argument("--demux", dest="demux_rtp_payload", action="store_true", default=None,
                     help="Also demux the reconstructed PS payload.")
    _add_ps_output_args(rtp)

    ps = sub.add_parser("ps", help="Decode a raw program stream file.")
    ps.add_argument("file", help="Input PS file.")
    _add_ps_output_args(ps)
    ps.add_argument("--print-ps-header", dest="print_pack_header", action="store_true", default=None)
    ps.add_argument("--print-sys-header", dest="print_system_header", action="store_true", default=None)
    ps.add_argument("--print-psm", action="store_true", default=None)
    ps.add_argument("--dump-pes-start-bytes", action="store_true", default=None)

    search = sub.add_parser("search", help="Find the first RTP record containing a hex byte pattern.")
    search.add_argument("file", help="Input RTP capture.")
    search.add_argument("pattern", help="Hex bytes, e.g. 000001e0.")

    first = sub.add_parser("first-frame", help="Cut the first access unit out of an H.264 Annex B file.")
    first.add_argument("file", help="Input H.264 elementary stream.")
    first.add_argument("output", help="Output file.")
    return parser


def _add_ps_output_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--dump-video", action="store_true", default=None, help="Write video frames.")
    parser.add_argument("--dump-audio", action="store_true", default=None, help="Write audio frames.")
    parser.add_argument("--output-video", dest="output_video_file", help="Video elementary stream output.")
    parser.add_argument("--output-audio", dest="output_audio_file", help="Audio elementary stream output.")
    parser.add_argument("--dump-video-frame-cnt", dest="dump_video_frame_count", type=int,
                        help="Stop after this many video frames (0 for no limit).")


_SETTING_KEYS = set(Settings.model_fields)


def build_config(args: argparse.Namespace, base: Settings | None = None) -> Settings:
    """Layer explicitly given CLI flags over the environment settings."""
    base = base or settings
    update = {k: v for k, v in vars(args).items() if k in _SETTING_KEYS and v is not None}
    if args.log_level:
        update["log_level"] = args.log_level.upper()
    return base.model_copy(update=update)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = build_config(args)
    logging.basicConfig(level=config.log_level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    try:
        data = Path(args.file).read_bytes()
    except OSError as e:
        logger.error("open file %s failed: %s", args.file, e)
        return 1
    logger.info("%s file size: %d", args.file, len(data))

    try:
        if args.command == "rtp":
            summary = decode_rtp_capture(data, config)
            logger.info("RTP session summary:\n%s", summary.model_dump_json(indent=2))
        elif args.command == "ps":
            summary = decode_program_stream(data, config)
            logger.info("PS session summary:\n%s", summary.model_dump_json(indent=2))
        elif args.command == "search":
            match = search_packets(data, bytes.fromhex(args.pattern), config)
            if match is None:
                logger.info("pattern %s not found", args.pattern)
                return 1
            print(match.model_dump_json(indent=2))
        else:
            Path(args.output).write_bytes(extract_first_frame(data))
    except DemuxError as e:
        logger.error("decode failed: %s", e)
        return 1
    except (OSError, ValueError) as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
