class DemuxError(Exception):
    """Base exception for all demuxing failures."""

    def __init__(self, message: str, position: int | None = None):
        self.message = message
        self.position = position  # byte offset into the session buffer
        super().__init__(message)


class InsufficientData(DemuxError):
    """The cursor has fewer bits left than requested."""

    pass


class TruncatedHeader(DemuxError):
    """The buffer ended in the middle of a fixed header."""

    pass


class LengthUnderflow(DemuxError):
    """A declared record length is smaller than the header already parsed."""

    pass


class UnknownStartCode(DemuxError):
    def __init__(self, start_code: int, position: int | None = None):
        self.start_code = start_code
        super().__init__(f"unknown start code 0x{start_code:08x}", position)


class MalformedProgramStreamMap(DemuxError):
    def __init__(self, remainder: int, position: int | None = None):
        self.remainder = remainder
        super().__init__(f"program stream map length mismatch, remainder {remainder} (expected 4)", position)


class UnexpectedEndOfStream(DemuxError):
    """A payload read or resynchronization scan ran past the buffer end."""

    pass


class DecodeComplete(Exception):
    """Normal early termination requested by a sink."""

    pass


class DumpComplete(DecodeComplete):
    """The configured number of video frames has been written."""

    pass


class ForwardComplete(DecodeComplete):
    """The configured number of RTP records has been forwarded."""

    pass
