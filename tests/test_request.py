"""Unit tests for request signature verification."""

import base64

import pysodium
import pytest

from app.keyserver.encoding import bcs_bytes, check_json_shape, uleb128
from app.keyserver.exceptions import RequestFormatError, SignatureInvalidError
from app.keyserver.request import message_for_request, verify_request_signature

from conftest import ENC_KEY, ENC_VERIFICATION_KEY


class TestUleb128:
    @pytest.mark.parametrize("value,encoded", [
        (0, b"\x00"),
        (1, b"\x01"),
        (127, b"\x7f"),
        (128, b"\x80\x01"),
        (300, b"\xac\x02"),
        (16384, b"\x80\x80\x01"),
    ])
    def test_known_values(self, value, encoded):
        assert uleb128(value) == encoded

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            uleb128(-1)


class TestMessageForRequest:
    def test_bcs_layout(self):
        message = message_for_request(b"abc", b"\x01\x02", b"")
        assert message == b"\x03abc" + b"\x02\x01\x02" + b"\x00"

    def test_long_field_uses_multibyte_length(self):
        ptb = b"x" * 200
        message = message_for_request(ptb, ENC_KEY, ENC_VERIFICATION_KEY)
        assert message.startswith(b"\xc8\x01" + ptb)
        assert message == bcs_bytes(ptb) + bcs_bytes(ENC_KEY) + bcs_bytes(ENC_VERIFICATION_KEY)

    def test_field_boundaries_are_unambiguous(self):
        assert message_for_request(b"ab", b"c", b"") != message_for_request(b"a", b"bc", b"")


def _sign(ptb: str, sigkey: bytes, enc_key=ENC_KEY, enc_vk=ENC_VERIFICATION_KEY) -> bytes:
    message = message_for_request(base64.b64decode(ptb), enc_key, enc_vk)
    return pysodium.crypto_sign_detached(message, sigkey)


class TestVerifyRequestSignature:
    def test_valid_signature(self, session_keypair, make_bundle):
        vk, sk = session_keypair
        ptb = make_bundle()
        verify_request_signature(ptb, ENC_KEY, ENC_VERIFICATION_KEY, _sign(ptb, sk), vk)

    def test_tampered_bundle(self, session_keypair, make_bundle):
        vk, sk = session_keypair
        signature = _sign(make_bundle(ids=(1,)), sk)
        with pytest.raises(SignatureInvalidError):
            verify_request_signature(
                make_bundle(ids=(2,)), ENC_KEY, ENC_VERIFICATION_KEY, signature, vk
            )

    def test_swapped_encryption_key(self, session_keypair, make_bundle):
        vk, sk = session_keypair
        ptb = make_bundle()
        signature = _sign(ptb, sk)
        with pytest.raises(SignatureInvalidError):
            verify_request_signature(
                ptb, bytes(reversed(ENC_KEY)), ENC_VERIFICATION_KEY, signature, vk
            )

    def test_wrong_session_key(self, session_keypair, make_bundle):
        _, sk = session_keypair
        other_vk, _ = pysodium.crypto_sign_seed_keypair(b"\x55" * 32)
        ptb = make_bundle()
        with pytest.raises(SignatureInvalidError):
            verify_request_signature(
                ptb, ENC_KEY, ENC_VERIFICATION_KEY, _sign(ptb, sk), other_vk
            )

    def test_bad_base64_is_format_error(self, session_keypair):
        vk, _ = session_keypair
        with pytest.raises(RequestFormatError, match="ptb"):
            verify_request_signature("%%%", ENC_KEY, ENC_VERIFICATION_KEY, b"\x00" * 64, vk)

    def test_short_signature_is_format_error(self, session_keypair, make_bundle):
        vk, _ = session_keypair
        with pytest.raises(RequestFormatError, match="request_signature"):
            verify_request_signature(make_bundle(), ENC_KEY, ENC_VERIFICATION_KEY, b"\x00" * 10, vk)

    def test_short_session_key_is_format_error(self, make_bundle):
        with pytest.raises(RequestFormatError, match="session_vk"):
            verify_request_signature(
                make_bundle(), ENC_KEY, ENC_VERIFICATION_KEY, b"\x00" * 64, b"\x00" * 16
            )


class TestCheckJsonShape:
    def test_flat_document_passes(self):
        check_json_shape(b'{"a": [1, 2], "b": "x"}', "doc", max_bytes=100, max_depth=2)

    def test_depth_limit(self):
        with pytest.raises(RequestFormatError, match="nested deeper than 2"):
            check_json_shape(b'{"a": [[1]]}', "doc", max_bytes=100, max_depth=2)

    def test_escaped_quote_keeps_string_open(self):
        check_json_shape(b'["\\"[[[["]', "doc", max_bytes=100, max_depth=1)

    def test_size_limit(self):
        with pytest.raises(RequestFormatError, match="exceeds 4 bytes"):
            check_json_shape(b"[1,2]", "doc", max_bytes=4, max_depth=8)

    def test_error_type_is_configurable(self):
        with pytest.raises(SignatureInvalidError):
            check_json_shape(b"[[", "doc", max_bytes=100, max_depth=1, error=SignatureInvalidError)
