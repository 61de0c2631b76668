"""Request signature verification.

The session key signs the BCS encoding of

    RequestFormat { ptb: vector<u8>, enc_key: vector<u8>, enc_verification_key: vector<u8> }

binding the policy bundle to the ElGamal key the answer will be
encrypted to. The signature is plain Ed25519 (no prefix, no hashing).

Note: pysodium is imported lazily inside functions, so modules that only
build messages do not require libsodium at import time.
"""

import logging
from typing import Optional

from .encoding import bcs_bytes, decode_base64
from .exceptions import RequestFormatError, SignatureInvalidError

log = logging.getLogger(__name__)

ED25519_SIGNATURE_LENGTH = 64
ED25519_PUBLIC_KEY_LENGTH = 32


def message_for_request(
    ptb_bytes: bytes, enc_key: bytes, enc_verification_key: bytes
) -> bytes:
    """BCS-serialize RequestFormat. Field order is part of the wire contract."""
    return bcs_bytes(ptb_bytes) + bcs_bytes(enc_key) + bcs_bytes(enc_verification_key)


def verify_request_signature(
    ptb: str,
    enc_key: bytes,
    enc_verification_key: bytes,
    request_signature: bytes,
    session_vk: bytes,
    request_id: Optional[str] = None,
) -> None:
    """Verify the session key's Ed25519 signature over the request.

    Args:
        ptb: base64 transaction bundle exactly as received.
        enc_key: Serialized ElGamal public key.
        enc_verification_key: Serialized ElGamal verification key.
        request_signature: 64-byte Ed25519 signature.
        session_vk: 32-byte Ed25519 public key from the certificate.
        request_id: Correlation id for logging.

    Raises:
        RequestFormatError: Undecodable bundle or wrong key/signature length.
        SignatureInvalidError: Signature does not verify.
    """
    ptb_bytes = decode_base64(ptb, "ptb")

    if len(request_signature) != ED25519_SIGNATURE_LENGTH:
        raise RequestFormatError(
            f"request_signature must be {ED25519_SIGNATURE_LENGTH} bytes, "
            f"got {len(request_signature)}"
        )
    if len(session_vk) != ED25519_PUBLIC_KEY_LENGTH:
        raise RequestFormatError(
            f"session_vk must be {ED25519_PUBLIC_KEY_LENGTH} bytes, got {len(session_vk)}"
        )

    message = message_for_request(ptb_bytes, enc_key, enc_verification_key)
    log.debug(
        f"Verifying request signature over {len(message)} message bytes",
        extra={"request_id": request_id or "-"},
    )

    import pysodium
    try:
        # raises ValueError if the signature is invalid
        pysodium.crypto_sign_verify_detached(request_signature, message, session_vk)
    except Exception:
        log.debug(
            "Request signature verification failed",
            extra={"request_id": request_id or "-"},
        )
        raise SignatureInvalidError("Request signature verification failed")
