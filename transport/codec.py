"""
Transport - Integrity Codec.

============================================================
PURPOSE
============================================================
Turns a metric batch into wire bytes and back:

    encode: metrics -> canonical JSON -> sign(JSON) -> gzip
    decode: gunzip -> verify(JSON) -> parse JSON

The signature is hex HMAC-SHA256 over the JSON bytes before
compression, carried in the HashSHA256 header.

============================================================
KEY HANDLING
============================================================
- Empty key: nothing is signed, signatures are ignored
- Key set:   a signature is required and must match

============================================================
"""

import gzip
import hashlib
import hmac
import json
import zlib
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from core.exceptions import IntegrityError, MetricValidationError
from core.models import Metric, batch_to_wire, metric_to_wire


SIGNATURE_HEADER = "HashSHA256"
CONTENT_ENCODING_HEADER = "Content-Encoding"
ACCEPT_ENCODING_HEADER = "Accept-Encoding"
GZIP_ENCODING = "gzip"


@dataclass(frozen=True)
class EncodedPayload:
    """Compressed body plus its out-of-band signature."""
    body: bytes
    signature: Optional[str] = None

    def headers(self) -> dict:
        """Request headers describing this payload."""
        headers = {
            "Content-Type": "application/json",
            CONTENT_ENCODING_HEADER: GZIP_ENCODING,
            ACCEPT_ENCODING_HEADER: GZIP_ENCODING,
        }
        if self.signature:
            headers[SIGNATURE_HEADER] = self.signature
        return headers


class IntegrityCodec:
    """
    Compression and optional signing of metric payloads.

    ============================================================
    USAGE
    ============================================================
    codec = IntegrityCodec(key="secret")
    payload = codec.encode(metrics)
    data = codec.decode(payload.body, payload.signature)

    ============================================================
    """

    def __init__(self, key: str = "") -> None:
        self._key = key.encode("utf-8") if key else b""

    @property
    def enabled(self) -> bool:
        """True when a shared key is configured."""
        return bool(self._key)

    # --------------------------------------------------------
    # Serialization
    # --------------------------------------------------------

    @staticmethod
    def serialize(metrics: Iterable[Metric]) -> bytes:
        """Canonical JSON array: sorted keys, compact separators."""
        return json.dumps(
            batch_to_wire(metrics),
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")

    @staticmethod
    def serialize_one(metric: Metric) -> bytes:
        """Canonical JSON object for the single-metric endpoint."""
        return json.dumps(
            metric_to_wire(metric),
            sort_keys=True,
            separators=(",", ":"),
        ).encode("utf-8")

    # --------------------------------------------------------
    # Compression
    # --------------------------------------------------------

    @staticmethod
    def compress(data: bytes) -> bytes:
        return gzip.compress(data)

    @staticmethod
    def decompress(data: bytes) -> bytes:
        """
        Gunzip a body.

        Raises:
            IntegrityError: If the body is not valid gzip
        """
        try:
            return gzip.decompress(data)
        except (OSError, EOFError, zlib.error) as e:
            raise IntegrityError("Failed to decompress request body", cause=e) from e

    # --------------------------------------------------------
    # Signatures
    # --------------------------------------------------------

    def sign(self, data: bytes) -> Optional[str]:
        """Hex HMAC-SHA256 of data, or None without a key."""
        if not self._key:
            return None
        return hmac.new(self._key, data, hashlib.sha256).hexdigest()

    def verify(self, data: bytes, signature: Optional[str]) -> None:
        """
        Check a signature over uncompressed bytes.

        Raises:
            IntegrityError: If a key is set and the signature is
                missing or does not match
        """
        if not self._key:
            return
        if not signature:
            raise IntegrityError(f"Missing {SIGNATURE_HEADER}", field=SIGNATURE_HEADER)

        expected = self.sign(data).encode("ascii")
        # Header text may hold non-ASCII or surrogate-escaped bytes
        received = signature.strip().lower().encode("utf-8", "surrogateescape")
        if not hmac.compare_digest(expected, received):
            raise IntegrityError(f"Invalid {SIGNATURE_HEADER}", field=SIGNATURE_HEADER)

    # --------------------------------------------------------
    # Full pipeline
    # --------------------------------------------------------

    def encode(self, metrics: Iterable[Metric]) -> EncodedPayload:
        """Serialize, sign the JSON bytes, then compress."""
        return self.encode_bytes(self.serialize(metrics))

    def encode_bytes(self, data: bytes) -> EncodedPayload:
        return EncodedPayload(body=self.compress(data), signature=self.sign(data))

    def decode(
        self,
        body: bytes,
        signature: Optional[str] = None,
        compressed: bool = True,
    ) -> Any:
        """
        Decompress, verify and parse a payload.

        Args:
            body: Raw request body
            signature: Value of the signature header, if any
            compressed: Whether body is gzip-compressed

        Returns:
            Parsed JSON document

        Raises:
            IntegrityError: Bad compression or signature
            MetricValidationError: Body is not valid JSON
        """
        data = self.decompress(body) if compressed else body
        self.verify(data, signature)
        try:
            return json.loads(data)
        except (UnicodeDecodeError, ValueError) as e:
            raise MetricValidationError("Invalid JSON", cause=e) from e
