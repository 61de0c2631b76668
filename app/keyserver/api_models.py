"""
Key server API models.

Wire models for the fetch-key endpoint plus the error code registry used
by every authorization stage.
"""

from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_serializer


# =============================================================================
# Request Models
# =============================================================================

class Certificate(BaseModel):
    """Session certificate signed by the user's Ethereum account.

    Authorizes `session_vk` to request keys of one policy contract on the
    user's behalf for `ttl_min` minutes starting at `creation_time`.
    """
    model_config = ConfigDict(frozen=True)

    user: str  # 0x-prefixed 20-byte address
    session_vk: str  # base64 Ed25519 public key
    creation_time: int = Field(ge=0)  # ms since epoch
    ttl_min: int
    signature: str  # 0x-prefixed 65-byte personal_sign signature


class FetchKeyRequest(BaseModel):
    """Request body for /v1/fetch_key_ethereum"""
    model_config = ConfigDict(frozen=True)

    ptb: str  # base64 transaction bundle
    enc_key: str
    enc_verification_key: str
    request_signature: str
    certificate: Certificate


# =============================================================================
# Response Models
# =============================================================================

class DecryptionKey(BaseModel):
    """Derived IBE key for one approved id, encrypted to the caller."""
    model_config = ConfigDict(frozen=True)

    id: bytes
    encrypted_key: bytes

    @field_serializer("id", "encrypted_key")
    def _as_hex(self, value: bytes) -> str:
        return value.hex()


class FetchKeyResponse(BaseModel):
    decryption_keys: List[DecryptionKey] = Field(default_factory=list)


# =============================================================================
# Error Models
# =============================================================================

class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    error: ErrorDetail


class ErrorCode:
    """Error code registry for the authorization pipeline"""
    # Request layer
    INVALID_REQUEST_FORMAT = "INVALID_REQUEST_FORMAT"
    REQUEST_TOO_LARGE = "REQUEST_TOO_LARGE"
    INVALID_BUNDLE_FORMAT = "INVALID_BUNDLE_FORMAT"
    MISSING_RECIPIENT = "MISSING_RECIPIENT"

    # Crypto layer
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    CERTIFICATE_EXPIRED = "CERTIFICATE_EXPIRED"

    # Policy layer
    SIMULATION_UNAVAILABLE = "SIMULATION_UNAVAILABLE"
    SIMULATION_MALFORMED = "SIMULATION_MALFORMED"
    POLICY_DENIED = "POLICY_DENIED"
    INVALID_POLICY_CALL = "INVALID_POLICY_CALL"

    # Server layer
    INTERNAL_ERROR = "INTERNAL_ERROR"


# HTTP status the transport answers with for each error code
ERROR_HTTP_STATUS: Dict[str, int] = {
    ErrorCode.INVALID_REQUEST_FORMAT: 400,
    ErrorCode.REQUEST_TOO_LARGE: 413,
    ErrorCode.INVALID_BUNDLE_FORMAT: 400,
    ErrorCode.MISSING_RECIPIENT: 400,
    ErrorCode.INVALID_SIGNATURE: 403,
    ErrorCode.CERTIFICATE_EXPIRED: 403,
    ErrorCode.POLICY_DENIED: 403,
    ErrorCode.INVALID_POLICY_CALL: 403,
    ErrorCode.SIMULATION_UNAVAILABLE: 503,
    ErrorCode.SIMULATION_MALFORMED: 502,
    ErrorCode.INTERNAL_ERROR: 500,
}
