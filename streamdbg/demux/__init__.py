"""
Binary demuxing core.

Provides pure Python parsers for RTP captures carrying MPEG Program Streams:

- bit_reader: Bit-precise cursor over an in-memory buffer
- rtp_parser: RTP capture record parser with stream identity tracking
- ps_parser: PS pack/PES parser with start-code resynchronization
- frame_classifier: H.264 NAL classification and session statistics
- errors: Fatal, recoverable and normal-termination conditions
"""
