"""
Tests for the integrity codec.

Key matrix:
- no key on either side: accepted, signature ignored
- same key: accepted
- server key, no signature: rejected
- different keys: rejected
"""

import gzip
import hashlib
import hmac
import json

import pytest

from core.exceptions import IntegrityError, MetricValidationError
from core.models import Counter, Gauge
from transport.codec import SIGNATURE_HEADER, EncodedPayload, IntegrityCodec


BATCH = [Gauge("Alloc", 1024.0), Counter("PollCount", 5)]


class TestSerialization:
    """Tests for canonical JSON and compression."""

    def test_serialize_is_canonical(self):
        data = IntegrityCodec.serialize(BATCH)
        assert data == (
            b'[{"id":"Alloc","type":"gauge","value":1024.0},'
            b'{"delta":5,"id":"PollCount","type":"counter"}]'
        )

    def test_compress_round_trip(self):
        assert IntegrityCodec.decompress(IntegrityCodec.compress(b"payload")) == b"payload"

    def test_decompress_rejects_garbage(self):
        with pytest.raises(IntegrityError):
            IntegrityCodec.decompress(b"definitely not gzip")


class TestSigning:
    """Tests for HMAC-SHA256 signatures."""

    def test_no_key_does_not_sign(self):
        codec = IntegrityCodec()
        assert codec.enabled is False
        assert codec.sign(b"data") is None

    def test_signature_is_hex_hmac_sha256(self):
        expected = hmac.new(b"secret", b"data", hashlib.sha256).hexdigest()
        assert IntegrityCodec("secret").sign(b"data") == expected

    def test_encode_signs_uncompressed_json(self):
        codec = IntegrityCodec("secret")
        payload = codec.encode(BATCH)

        plain = gzip.decompress(payload.body)
        assert plain == IntegrityCodec.serialize(BATCH)
        assert payload.signature == codec.sign(plain)

    def test_payload_headers(self):
        headers = EncodedPayload(body=b"", signature="abc").headers()
        assert headers["Content-Encoding"] == "gzip"
        assert headers["Accept-Encoding"] == "gzip"
        assert headers["Content-Type"] == "application/json"
        assert headers[SIGNATURE_HEADER] == "abc"

    def test_unsigned_payload_has_no_signature_header(self):
        assert SIGNATURE_HEADER not in EncodedPayload(body=b"").headers()


class TestKeyMatrix:
    """Tests for verification with and without keys."""

    def test_no_keys_accepts(self):
        payload = IntegrityCodec().encode(BATCH)
        decoded = IntegrityCodec().decode(payload.body, payload.signature)
        assert decoded[0]["id"] == "Alloc"

    def test_no_server_key_ignores_signature(self):
        payload = IntegrityCodec("agent-key").encode(BATCH)
        assert IntegrityCodec().decode(payload.body, "not-a-real-signature")

    def test_same_key_accepts(self):
        payload = IntegrityCodec("shared").encode(BATCH)
        decoded = IntegrityCodec("shared").decode(payload.body, payload.signature)
        assert len(decoded) == 2

    def test_missing_signature_rejected(self):
        payload = IntegrityCodec().encode(BATCH)
        with pytest.raises(IntegrityError, match="Missing HashSHA256"):
            IntegrityCodec("shared").decode(payload.body, payload.signature)

    def test_different_keys_rejected(self):
        payload = IntegrityCodec("agent-key").encode(BATCH)
        with pytest.raises(IntegrityError, match="Invalid HashSHA256"):
            IntegrityCodec("server-key").decode(payload.body, payload.signature)

    def test_tampered_body_rejected(self):
        codec = IntegrityCodec("shared")
        payload = codec.encode(BATCH)
        tampered = gzip.compress(gzip.decompress(payload.body).replace(b"1024.0", b"2048.0"))
        with pytest.raises(IntegrityError):
            codec.decode(tampered, payload.signature)

    @pytest.mark.parametrize("signature", ["é", "cafÃ©", "ab\udcff"])
    def test_non_ascii_signature_rejected(self, signature):
        with pytest.raises(IntegrityError, match="Invalid HashSHA256"):
            IntegrityCodec("k").verify(b"[]", signature)

    def test_signature_case_and_whitespace_ignored(self):
        codec = IntegrityCodec("k")
        codec.verify(b"[]", f"  {codec.sign(b'[]').upper()} ")


class TestDecode:
    """Tests for decode edge cases."""

    def test_uncompressed_body(self):
        body = json.dumps({"id": "g"}).encode()
        assert IntegrityCodec().decode(body, compressed=False) == {"id": "g"}

    def test_invalid_json(self):
        with pytest.raises(MetricValidationError, match="Invalid JSON"):
            IntegrityCodec().decode(gzip.compress(b"{not json"))
