"""
Format detection and decoding entry points.

Decoders are tried in a fixed order, first sniff match wins. The binary
decoder sniffs the raw bytes first since the permissive text sniffers could
misfire on binary data decoded as text. NMEA is both the last candidate and
the fallback when nothing matches.
"""

import logging
from pathlib import Path
from typing import Optional, Union

from racelog.models.telemetry import TelemetryRun
from racelog.services.aim_parser import AimDecoder
from racelog.services.alfano_parser import AlfanoDecoder
from racelog.services.canonicalizer import canonicalize_raw, generate_run_id
from racelog.services.decoding import DecodeError, LogDecoder, to_text
from racelog.services.nmea_parser import NmeaDecoder
from racelog.services.ubx_parser import UbxDecoder
from racelog.services.vbo_parser import VboDecoder

logger = logging.getLogger(__name__)


DECODERS: list[LogDecoder] = [
    UbxDecoder(),
    VboDecoder(),
    AlfanoDecoder(),
    AimDecoder(),
    NmeaDecoder(),
]

FALLBACK_DECODER: LogDecoder = DECODERS[-1]


def get_decoder(name: str) -> LogDecoder:
    for decoder in DECODERS:
        if decoder.name == name:
            return decoder
    raise ValueError(f"Unknown log format: {name}")


def detect_format(data: Union[bytes, str]) -> LogDecoder:
    """
    Pick the decoder for a buffer.

    Binary decoders see the bytes, text decoders see the decoded text.
    """
    if not data:
        raise DecodeError("Empty file")

    text: Optional[str] = None
    for decoder in DECODERS:
        if decoder.binary:
            if isinstance(data, (bytes, bytearray)) and decoder.sniff(data):
                return decoder
            continue
        if text is None:
            text = to_text(data)
        if decoder.sniff(text):
            return decoder

    logger.debug("No format matched, falling back to %s", FALLBACK_DECODER.name)
    return FALLBACK_DECODER


def decode_buffer(
    data: Union[bytes, str],
    name: str,
    source_file: Optional[Path] = None,
    format_name: Optional[str] = None,
) -> TelemetryRun:
    """
    Decode an already-resident buffer into a canonical TelemetryRun.

    Args:
        data: Raw file bytes, or text for the text formats
        name: Display name of the run
        source_file: Originating file, if any (used for the run id)
        format_name: Force a decoder by name instead of sniffing

    Raises:
        DecodeError: the buffer could not be decoded
    """
    decoder = get_decoder(format_name) if format_name else detect_format(data)
    payload = data if decoder.binary else to_text(data)
    raw = decoder.decode(payload)

    content = data.encode("utf-8") if isinstance(data, str) else bytes(data)
    run_id = generate_run_id(name, source_file=source_file, data=content)
    return canonicalize_raw(raw, name=name, source_file=source_file, run_id=run_id)


def parse_log_file(filepath: Path) -> TelemetryRun:
    """Read a log file from disk and decode it."""
    filepath = Path(filepath)
    data = filepath.read_bytes()
    return decode_buffer(data, name=filepath.stem, source_file=filepath)
