"""Session certificate verification.

A certificate delegates a short-lived Ed25519 session key to an Ethereum
account for one policy contract. The user signs, with personal_sign
(EIP-191), the message

    Accessing keys of package {contract} for {ttl} mins from {utc}, session key {vk}

where `contract` is the lowercase 0x address of the bundle's first
recipient, `utc` is `YYYY-MM-DD HH:MM:SS UTC` and `vk` is the base64 raw
session public key. The template must stay byte-identical to the client
SDK; any deviation invalidates every certificate in circulation.
"""

import base64
import logging
import time
from datetime import datetime, timezone
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import decode_hex, encode_hex

from app.core.config import SESSION_KEY_TTL_MAX

from .api_models import Certificate
from .encoding import decode_0x_hex, decode_base64
from .exceptions import CertificateExpiredError, RequestFormatError, SignatureInvalidError

log = logging.getLogger(__name__)

CERTIFICATE_MESSAGE_TEMPLATE = (
    "Accessing keys of package {address} for {ttl_min} mins from {timestamp}, "
    "session key {session_vk}"
)

ED25519_PUBLIC_KEY_LENGTH = 32
ETH_SIGNATURE_LENGTH = 65


def _now_ms() -> int:
    return int(time.time() * 1000)


def format_creation_time(creation_time_ms: int) -> str:
    """Render creation time (ms) as `YYYY-MM-DD HH:MM:SS UTC`, floored to seconds."""
    try:
        dt = datetime.fromtimestamp(creation_time_ms // 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise RequestFormatError(f"Certificate creation_time out of range: {e}")
    return dt.strftime("%Y-%m-%d %H:%M:%S") + " UTC"


def session_verifying_key(certificate: Certificate) -> bytes:
    """Raw 32-byte Ed25519 session public key of the certificate."""
    vk = decode_base64(certificate.session_vk, "certificate session_vk")
    if len(vk) != ED25519_PUBLIC_KEY_LENGTH:
        raise RequestFormatError(
            f"certificate session_vk must be {ED25519_PUBLIC_KEY_LENGTH} bytes, got {len(vk)}"
        )
    return vk


def message_for_certificate(certificate: Certificate, contract_address: bytes) -> str:
    """Build the personal message the user signed for this certificate."""
    return CERTIFICATE_MESSAGE_TEMPLATE.format(
        address=encode_hex(contract_address),
        ttl_min=certificate.ttl_min,
        timestamp=format_creation_time(certificate.creation_time),
        session_vk=base64.b64encode(session_verifying_key(certificate)).decode("ascii"),
    )


def verify_personal_signature(expected_address: bytes, message: str, signature: bytes) -> None:
    """Verify an EIP-191 personal_sign signature by address recovery.

    Raises:
        SignatureInvalidError: Signature unrecoverable or signer mismatch.
    """
    try:
        recovered = Account.recover_message(encode_defunct(text=message), signature=signature)
    except Exception as e:
        log.debug(f"Failed to recover address from certificate signature: {type(e).__name__}")
        raise SignatureInvalidError("Certificate signature could not be recovered")

    if decode_hex(recovered) != expected_address:
        log.debug(
            f"Certificate signature mismatch: expected {encode_hex(expected_address)}, "
            f"recovered {recovered.lower()}"
        )
        raise SignatureInvalidError("Certificate was not signed by its user")


def check_certificate(
    certificate: Certificate,
    contract_address: bytes,
    now_ms: Optional[int] = None,
    max_ttl_min: int = SESSION_KEY_TTL_MAX,
) -> None:
    """Validate certificate expiry, ttl bounds and signature.

    Args:
        certificate: Certificate carried by the request.
        contract_address: 20-byte policy contract (first bundle recipient).
        now_ms: Current time in ms since epoch (defaults to wall clock).
        max_ttl_min: Largest accepted ttl_min.

    Raises:
        CertificateExpiredError: now_ms > creation_time + ttl_min minutes.
        RequestFormatError: ttl_min out of bounds or malformed fields.
        SignatureInvalidError: Signature does not recover to certificate.user.
    """
    if now_ms is None:
        now_ms = _now_ms()

    expires_at = certificate.creation_time + certificate.ttl_min * 60_000
    if now_ms > expires_at:
        log.debug(f"Certificate expired {now_ms - expires_at} ms ago")
        raise CertificateExpiredError(
            f"Session certificate expired at {expires_at} (now {now_ms})"
        )

    if not 1 <= certificate.ttl_min <= max_ttl_min:
        raise RequestFormatError(
            f"certificate ttl_min must be between 1 and {max_ttl_min}, got {certificate.ttl_min}"
        )

    user = decode_0x_hex(certificate.user, "certificate user", length=20)
    signature = decode_0x_hex(
        certificate.signature, "certificate signature", length=ETH_SIGNATURE_LENGTH
    )

    message = message_for_certificate(certificate, contract_address)
    log.debug(f"Checking certificate signature on message: {message!r}")
    verify_personal_signature(user, message, signature)
