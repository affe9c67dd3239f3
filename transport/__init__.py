"""
Transport Package.

Wire payload handling shared by the agent and the server.

Modules:
- codec: canonical JSON, gzip and HMAC-SHA256 signatures
"""

from transport.codec import (
    ACCEPT_ENCODING_HEADER,
    CONTENT_ENCODING_HEADER,
    GZIP_ENCODING,
    SIGNATURE_HEADER,
    EncodedPayload,
    IntegrityCodec,
)


__all__ = [
    "ACCEPT_ENCODING_HEADER",
    "CONTENT_ENCODING_HEADER",
    "GZIP_ENCODING",
    "SIGNATURE_HEADER",
    "EncodedPayload",
    "IntegrityCodec",
]
