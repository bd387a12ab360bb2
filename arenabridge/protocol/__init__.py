"""Wire protocol decoders."""

from arenabridge.protocol.dereference import parse_and_dereference
from arenabridge.protocol.stream import StreamDecoder, apply_event, decode_stream, parse_record

__all__ = [
    "StreamDecoder",
    "apply_event",
    "decode_stream",
    "parse_and_dereference",
    "parse_record",
]
