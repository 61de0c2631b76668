"""Shared fixtures for key server tests.

Keys are deterministic so failures are reproducible:
- Ethereum user key: 0x11..11
- Ed25519 session key: seed 0x22..22
"""

import base64
import hashlib
import json
import os
import time

import httpx
import pysodium
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import encode_hex

from app.core.config import KeyServerConfig
from app.keyserver.api_models import Certificate, FetchKeyRequest
from app.keyserver.bundle import TransactionDescriptor, encode_bundle, seal_approve_calldata
from app.keyserver.certificate import message_for_certificate
from app.keyserver.request import message_for_request

USER_PRIVATE_KEY = "0x" + "11" * 32
SESSION_SEED = bytes([0x22]) * 32
CONTRACT = bytes.fromhex("b492bb3849046633a5a0656cbeedb3a8b4f8fceb")
OTHER_CONTRACT = bytes.fromhex("a5f66cc6959c1eb84827887b31da55e250647992")
ENC_KEY = bytes(range(48))
ENC_VERIFICATION_KEY = bytes(range(96))
MASTER_KEY = bytes([0x33]) * 32
ABI_TRUE_HEX = "0x" + "00" * 31 + "01"
ABI_FALSE_HEX = "0x" + "00" * 32


def now_ms() -> int:
    return int(time.time() * 1000)


def policy_id(n: int) -> bytes:
    return n.to_bytes(32, "big")


class FakeCryptoBackend:
    """Deterministic extraction, randomized encryption."""

    def __init__(self):
        self.extracted = []

    def extract(self, master_key: bytes, key_id: bytes) -> bytes:
        self.extracted.append(key_id)
        return hashlib.sha256(master_key + key_id).digest()

    def encrypt(self, derived_key: bytes, enc_key: bytes) -> bytes:
        return os.urandom(16) + hashlib.sha256(enc_key + derived_key).digest()


@pytest.fixture
def user_account():
    return Account.from_key(USER_PRIVATE_KEY)


@pytest.fixture
def session_keypair():
    """(verkey, sigkey) for the Ed25519 session key."""
    return pysodium.crypto_sign_seed_keypair(SESSION_SEED)


@pytest.fixture
def make_certificate(user_account, session_keypair):
    """Factory for certificates signed by the test user."""

    def _make(
        contract: bytes = CONTRACT,
        creation_time: int = None,
        ttl_min: int = 15,
        account=None,
        user: str = None,
    ) -> Certificate:
        signer = account or user_account
        unsigned = Certificate(
            user=user or signer.address,
            session_vk=base64.b64encode(session_keypair[0]).decode(),
            creation_time=now_ms() - 1000 if creation_time is None else creation_time,
            ttl_min=ttl_min,
            signature="0x" + "00" * 65,
        )
        message = message_for_certificate(unsigned, contract)
        signed = signer.sign_message(encode_defunct(text=message))
        return unsigned.model_copy(update={"signature": encode_hex(bytes(signed.signature))})

    return _make


@pytest.fixture
def make_bundle():
    """Factory for base64 bundles of seal_approve calls."""

    def _make(ids=(1,), contract: bytes = CONTRACT) -> str:
        return encode_bundle([
            TransactionDescriptor(to=contract, data=seal_approve_calldata(policy_id(i)))
            for i in ids
        ])

    return _make


@pytest.fixture
def make_request(session_keypair, make_certificate, make_bundle):
    """Factory for signed FetchKeyRequests."""

    def _make(ptb: str = None, certificate: Certificate = None) -> FetchKeyRequest:
        ptb = ptb if ptb is not None else make_bundle()
        certificate = certificate or make_certificate()
        message = message_for_request(
            base64.b64decode(ptb), ENC_KEY, ENC_VERIFICATION_KEY
        )
        signature = pysodium.crypto_sign_detached(message, session_keypair[1])
        return FetchKeyRequest(
            ptb=ptb,
            enc_key=base64.b64encode(ENC_KEY).decode(),
            enc_verification_key=base64.b64encode(ENC_VERIFICATION_KEY).decode(),
            request_signature=base64.b64encode(signature).decode(),
            certificate=certificate,
        )

    return _make


def simulation_item(status: bool = True, input_hex: str = None, output: str = ABI_TRUE_HEX):
    """One simulate-bundle result entry in the simulator's response shape."""
    if input_hex is None:
        input_hex = encode_hex(seal_approve_calldata(policy_id(1)))
    return {
        "simulation": {"id": "sim", "status": status},
        "transaction": {
            "call_trace": [{"input": input_hex, "output": output}],
            "transaction_info": {"logs": []},
        },
    }


def mock_transport(items=None, status_code: int = 200, body=None, recorder=None):
    """httpx.MockTransport answering every POST with the given results."""

    def handler(request: httpx.Request) -> httpx.Response:
        if recorder is not None:
            recorder.append(request)
        if body is not None:
            return httpx.Response(status_code, content=body)
        return httpx.Response(status_code, json={"simulation_results": items or []})

    return httpx.MockTransport(handler)


@pytest.fixture
def config():
    return KeyServerConfig(
        network_id="84532",
        simulation_url="https://simulator.test/simulate-bundle",
        simulation_access_key="test-access-key",
        simulation_timeout=2.0,
    )


@pytest.fixture
def crypto_backend():
    return FakeCryptoBackend()
