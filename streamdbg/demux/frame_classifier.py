"""
Elementary frame classification and statistics.

Video payloads are inspected for the NAL header byte that follows the Annex B
start code; audio payloads are passed through opaquely. Counters live in the
PSDecodeState threaded through every call so a session's statistics are owned
by the session, not by the classifier.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from streamdbg.const import (
    ANNEXB_PREFIX_SIZE,
    NAL_HEADER_IDR,
    NAL_HEADER_P_FRAME,
    NAL_HEADER_PPS,
    NAL_HEADER_SPS,
)
from streamdbg.demux.errors import DumpComplete

if TYPE_CHECKING:
    from streamdbg.demux.ps_parser import PSDecodeState

logger = logging.getLogger(__name__)


class FrameKind(str, Enum):
    VIDEO = "video"
    AUDIO = "audio"


class FrameSink(Protocol):
    def write(self, data: bytes) -> None: ...


@dataclass
class ElementaryFrame:
    """One decoded (or recovered) PES payload."""

    kind: FrameKind
    data: bytes
    valid: bool = True  # False when recovered by resynchronization
    offset: int = 0  # Byte offset of the payload in the session buffer

    @property
    def nal_header(self) -> int | None:
        """Byte following the 4-byte Annex B prefix, if present."""
        if len(self.data) <= ANNEXB_PREFIX_SIZE:
            return None
        return self.data[ANNEXB_PREFIX_SIZE]


_NAL_LABELS = {
    NAL_HEADER_SPS: "SPS",
    NAL_HEADER_PPS: "PPS",
    NAL_HEADER_IDR: "IDR",
    NAL_HEADER_P_FRAME: "P frame",
}


class FrameClassifier:
    """
    Classifies elementary frames, updates session counters and hands frames
    to the optional elementary stream sinks.

    Once ``dump_video_frame_count`` video frames have been written, the next
    video frame bound for the sink raises DumpComplete. A count of 0 disables
    the cap.
    """

    def __init__(
        self,
        video_sink: FrameSink | None = None,
        audio_sink: FrameSink | None = None,
        dump_video_frame_count: int = 0,
        write_recovered_frames: bool = False,
        verbose: bool = False,
    ) -> None:
        self.video_sink = video_sink
        self.audio_sink = audio_sink
        self.dump_video_frame_count = dump_video_frame_count
        self.write_recovered_frames = write_recovered_frames
        self._unit_level = logging.INFO if verbose else logging.DEBUG

    def handle(self, frame: ElementaryFrame, state: "PSDecodeState") -> None:
        if frame.kind is FrameKind.VIDEO:
            self._handle_video(frame, state)
        else:
            self._handle_audio(frame, state)

    def _handle_video(self, frame: ElementaryFrame, state: "PSDecodeState") -> None:
        state.total_video_frames += 1
        if frame.valid:
            state.valid_video_frames += 1
        else:
            state.error_video_frames += 1

        nal = frame.nal_header
        if nal == NAL_HEADER_SPS:
            state.sps_count += 1
        elif nal == NAL_HEADER_PPS:
            state.pps_count += 1
        elif nal == NAL_HEADER_IDR:
            if frame.valid:
                state.i_frame_count += 1
            else:
                state.error_i_frame_count += 1
        elif nal == NAL_HEADER_P_FRAME:
            state.p_frame_count += 1

        logger.log(
            self._unit_level,
            "[classifier] video len=%d %s%s",
            len(frame.data),
            _NAL_LABELS.get(nal, "other") if nal is not None else "short",
            "" if frame.valid else " (recovered)",
        )

        if self.video_sink is None or not (frame.valid or self.write_recovered_frames):
            return
        if self.dump_video_frame_count > 0 and state.written_video_frames >= self.dump_video_frame_count:
            logger.info("[classifier] Dumped %d video frames, stopping", state.written_video_frames)
            raise DumpComplete(f"dumped {state.written_video_frames} video frames")
        self.video_sink.write(frame.data)
        state.written_video_frames += 1

    def _handle_audio(self, frame: ElementaryFrame, state: "PSDecodeState") -> None:
        state.total_audio_frames += 1
        if not frame.valid:
            state.error_audio_frames += 1
        logger.log(
            self._unit_level,
            "[classifier] audio len=%d%s",
            len(frame.data),
            "" if frame.valid else " (recovered)",
        )
        if self.audio_sink is not None and (frame.valid or self.write_recovered_frames):
            self.audio_sink.write(frame.data)
            state.written_audio_frames += 1
