"""ASCII payload → HRSpO2 reading.

The 0x09 frame carries its values as ASCII text rather than binary:
heart rate first, then SpO2, separated by a comma, semicolon or
whitespace (e.g. b"72,98"). A six-digit run without a separator is
read as two zero-padded three-digit fields (b"072098").
Trailing NUL padding from the device is ignored.
"""

import re

from pydantic import ValidationError

from monitor.domain.models import HRSpO2, ProtocolId
from shared.exceptions import DecodeFailureError

_SEPARATORS = re.compile(r"[,;\s]+")
_FIXED_WIDTH = 3


def _fields(text: str) -> list[str]:
    parts = [p for p in _SEPARATORS.split(text) if p]
    if len(parts) == 1 and len(parts[0]) == 2 * _FIXED_WIDTH:
        return [parts[0][:_FIXED_WIDTH], parts[0][_FIXED_WIDTH:]]
    return parts


def ascii_to_hrspo2(payload: bytes) -> HRSpO2:
    """Decode a 0x09 payload (header already stripped).

    Raises:
        DecodeFailureError: payload is not ASCII, does not hold exactly
            two integer fields, or a value is out of range.
    """
    try:
        text = payload.rstrip(b"\x00").decode("ascii").strip()
    except UnicodeDecodeError as e:
        raise DecodeFailureError(ProtocolId.P09_HR_SPO2, f"non-ASCII payload {payload.hex()}") from e

    fields = _fields(text)
    if len(fields) != 2 or not all(f.isdigit() for f in fields):
        raise DecodeFailureError(ProtocolId.P09_HR_SPO2, f"expected 'HR,SpO2', got {text!r}")

    try:
        return HRSpO2(heart_rate=int(fields[0]), spo2=int(fields[1]))
    except ValidationError as e:
        raise DecodeFailureError(ProtocolId.P09_HR_SPO2, f"reading out of range: {text!r}") from e
