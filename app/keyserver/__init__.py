"""Ethereum key-release authorization.

Session certificate + request signature + simulated on-chain policy
decide which IBE keys are released to the caller.
"""

from .exceptions import (
    KeyServerError,
    RequestFormatError,
    SignatureInvalidError,
    CertificateExpiredError,
    BundleFormatError,
    MissingRecipientError,
    SimulationUnavailableError,
    SimulationMalformedError,
    PolicyDeniedError,
    PolicyCallInvalidError,
)
from .bundle import TransactionDescriptor, parse_bundle, first_contract_address, encode_bundle
from .certificate import check_certificate, message_for_certificate
from .request import verify_request_signature, message_for_request
from .simulation import SimulationClient, SimulationResult, check_policy_results
from .key_ids import extract_approved_ids
from .crypto import KeyCryptoBackend, create_full_id, load_crypto_backend
from .delivery import KeyDeliveryService
from .pipeline import AuthorizationPipeline, PipelineStage

__all__ = [
    # Exceptions
    "KeyServerError",
    "RequestFormatError",
    "SignatureInvalidError",
    "CertificateExpiredError",
    "BundleFormatError",
    "MissingRecipientError",
    "SimulationUnavailableError",
    "SimulationMalformedError",
    "PolicyDeniedError",
    "PolicyCallInvalidError",
    # Bundle codec
    "TransactionDescriptor",
    "parse_bundle",
    "first_contract_address",
    "encode_bundle",
    # Verifiers
    "check_certificate",
    "message_for_certificate",
    "verify_request_signature",
    "message_for_request",
    # Policy
    "SimulationClient",
    "SimulationResult",
    "check_policy_results",
    "extract_approved_ids",
    # Delivery
    "KeyCryptoBackend",
    "create_full_id",
    "load_crypto_backend",
    "KeyDeliveryService",
    # Orchestration
    "AuthorizationPipeline",
    "PipelineStage",
]
