"""
Key server configuration constants.

Constants are organized into:
- NORMATIVE: Fixed by the client SDK wire contract, cannot change without a
  coordinated client release
- POLICY: Implementation choices for authorization behavior
- OPERATIONAL: Deployment-specific settings (env vars)

The module-level constants keep the environment-derived defaults. The
pipeline itself never reads them directly; it receives a KeyServerConfig
built by KeyServerConfig.from_env() (or by a test).
"""

import os
from dataclasses import dataclass
from typing import Optional

# =============================================================================
# NORMATIVE CONSTANTS (fixed by the client SDK)
# =============================================================================

# Maximum TTL for session keys in minutes.
# The SDK refuses to create session keys outside 1..30 minutes.
SESSION_KEY_TTL_MAX: int = 30

# Solidity signature of the policy approval entry point.
# The 4-byte selector is keccak256(signature)[:4].
SEAL_APPROVE_SIGNATURE: str = "seal_approve(bytes32)"

# Canonical ABI encoding of boolean true (32-byte big-endian 1).
ABI_TRUE: bytes = (1).to_bytes(32, "big")

# =============================================================================
# POLICY CONSTANTS
# =============================================================================

# Whether bundles may call more than one contract.
# False (default): every transaction must target the contract at index 0,
# since only that contract's address is bound into the session certificate.
ALLOW_MULTI_CONTRACT_BUNDLES: bool = os.getenv(
    "KEYSERVER_ALLOW_MULTI_CONTRACT_BUNDLES", "false"
).lower() == "true"

# =============================================================================
# OPERATIONAL SETTINGS (deployment-specific, via environment variables)
# =============================================================================

# Chain the policy contracts live on (Base Sepolia by default).
POLICY_NETWORK_ID: str = os.getenv("KEYSERVER_NETWORK_ID", "84532")

# Tenderly bundle simulation endpoint.
TENDERLY_ACCOUNT: str = os.getenv("TENDERLY_ACCOUNT", "may19")
TENDERLY_PROJECT: str = os.getenv("TENDERLY_PROJECT", "project")

SIMULATION_API_URL: str = os.getenv(
    "KEYSERVER_SIMULATION_URL",
    f"https://api.tenderly.co/api/v1/account/{TENDERLY_ACCOUNT}"
    f"/project/{TENDERLY_PROJECT}/simulate-bundle",
)

# Static access key sent as X-Access-Key. Empty means unconfigured; the
# simulation client fails closed rather than calling without auth.
TENDERLY_ACCESS_KEY: str = os.getenv("TENDERLY_ACCESS_KEY", "")

# Upper bound for a single simulate-bundle round trip.
SIMULATION_TIMEOUT_SECONDS: float = float(
    os.getenv("KEYSERVER_SIMULATION_TIMEOUT", "10.0")
)

# Hex-encoded IBE master secret. Read once at startup.
MASTER_KEY_HEX: str = os.getenv("KEYSERVER_MASTER_KEY", "")

# Dotted path ("package.module:attribute") of the IBE/ElGamal backend.
CRYPTO_BACKEND: str = os.getenv("KEYSERVER_CRYPTO_BACKEND", "")

# Upper bounds on untrusted JSON. Checked before decoding.
MAX_REQUEST_BYTES: int = int(os.getenv("KEYSERVER_MAX_REQUEST_BYTES", "262144"))
MAX_REQUEST_JSON_DEPTH: int = 8
MAX_BUNDLE_BYTES: int = int(os.getenv("KEYSERVER_MAX_BUNDLE_BYTES", "131072"))

# Admin endpoint visibility
# Default: True for dev, set to False in production deployments
ADMIN_ENDPOINT_ENABLED: bool = os.getenv("ADMIN_ENDPOINT_ENABLED", "true").lower() == "true"


@dataclass(frozen=True)
class KeyServerConfig:
    """Explicit configuration handed to the pipeline and its collaborators.

    Attributes:
        network_id: Chain id the policy bundle is simulated against.
        simulation_url: Full URL of the simulate-bundle endpoint.
        simulation_access_key: Value for the X-Access-Key header.
        simulation_timeout: Seconds before a simulation call is abandoned.
        session_key_ttl_max: Largest accepted certificate ttl_min.
        allow_multi_contract_bundles: Accept bundles touching several contracts.
    """

    network_id: str = POLICY_NETWORK_ID
    simulation_url: str = SIMULATION_API_URL
    simulation_access_key: Optional[str] = None
    simulation_timeout: float = SIMULATION_TIMEOUT_SECONDS
    session_key_ttl_max: int = SESSION_KEY_TTL_MAX
    allow_multi_contract_bundles: bool = ALLOW_MULTI_CONTRACT_BUNDLES

    @classmethod
    def from_env(cls) -> "KeyServerConfig":
        """Build a config from the process environment."""
        return cls(
            network_id=POLICY_NETWORK_ID,
            simulation_url=SIMULATION_API_URL,
            simulation_access_key=TENDERLY_ACCESS_KEY or None,
            simulation_timeout=SIMULATION_TIMEOUT_SECONDS,
            session_key_ttl_max=SESSION_KEY_TTL_MAX,
            allow_multi_contract_bundles=ALLOW_MULTI_CONTRACT_BUNDLES,
        )
