"""Error hierarchy for frame routing and uploads.

Routing errors (ProtocolError) are terminal for one frame.
Upload errors (UploadError) are terminal for one flushed buffer.
Neither ends the monitoring session.
"""


class BridgeError(Exception):
    """Base class for every error raised by the bridge."""


class ProtocolError(BridgeError):
    def __init__(self, reason: str, detail: str):
        self.reason = reason
        self.detail = detail
        super().__init__(detail)


class FrameTooShortError(ProtocolError):
    def __init__(self, length: int, required: int):
        self.length = length
        self.required = required
        super().__init__(
            reason="frame_too_short",
            detail=f"Frame too short: {length} bytes (need at least {required})",
        )


class UnknownTagError(ProtocolError):
    def __init__(self, tag: int):
        self.tag = tag
        super().__init__(
            reason="unknown_tag",
            detail=f"Unknown protocol tag 0x{tag:02x}",
        )


class UploadError(BridgeError):
    kind = "upload"

    def __init__(self, protocol_id: int, detail: str):
        self.protocol_id = protocol_id
        self.detail = detail
        super().__init__(f"{self.kind} failure for protocol 0x{protocol_id:02x}: {detail}")


class NetworkFailureError(UploadError):
    """Transport error, timeout, or HTTP error status from the backend."""

    kind = "network"


class DecodeFailureError(UploadError):
    """Payload or response body could not be decoded."""

    kind = "decode"


class BLEConnectionError(BridgeError):
    """The band could not be found, connected, or subscribed to."""
