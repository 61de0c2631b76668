"""Authorization pipeline for Ethereum key requests.

Linear, fail-fast state machine:

    START -> SIGNATURE_VERIFIED -> BUNDLE_PARSED -> CERTIFICATE_VALID
          -> POLICY_EVALUATED -> KEYS_DELIVERED

Any stage failure raises its KeyServerError unchanged and the request
ends there. Keys are derived only after every check has passed; no
partial key list is ever returned.

The certificate is bound to the bundle's first recipient, so it is
checked after the bundle is parsed. The policy simulation is the only
network call.
"""

import logging
import time
import uuid
from enum import Enum
from typing import Callable, Optional

from app.core.config import KeyServerConfig

from .api_models import ErrorCode, ErrorDetail, FetchKeyRequest, FetchKeyResponse
from .bundle import contract_address_of, parse_bundle, require_single_contract
from .certificate import check_certificate, session_verifying_key
from .delivery import KeyDeliveryService
from .encoding import decode_0x_hex, decode_binary
from .exceptions import KeyServerError
from .key_ids import extract_approved_ids
from .request import verify_request_signature
from .simulation import SimulationClient, check_policy_results

log = logging.getLogger(__name__)

Clock = Callable[[], int]


class PipelineStage(str, Enum):
    START = "START"
    SIGNATURE_VERIFIED = "SIGNATURE_VERIFIED"
    BUNDLE_PARSED = "BUNDLE_PARSED"
    CERTIFICATE_VALID = "CERTIFICATE_VALID"
    POLICY_EVALUATED = "POLICY_EVALUATED"
    KEYS_DELIVERED = "KEYS_DELIVERED"


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


def to_error_detail(exc: Exception) -> ErrorDetail:
    """Convert a pipeline exception to ErrorDetail for the API response."""
    code = getattr(exc, "code", ErrorCode.INTERNAL_ERROR)
    message = getattr(exc, "message", str(exc))
    return ErrorDetail(code=code, message=message)


class AuthorizationPipeline:
    """Single entry point the transport uses to answer a fetch-key request."""

    def __init__(
        self,
        config: KeyServerConfig,
        simulation_client: SimulationClient,
        delivery: KeyDeliveryService,
        clock: Optional[Clock] = None,
    ):
        self.config = config
        self._simulation = simulation_client
        self._delivery = delivery
        self._clock = clock or wall_clock_ms

    async def fetch_keys(
        self, request: FetchKeyRequest, request_id: Optional[str] = None
    ) -> FetchKeyResponse:
        """Authorize the request and deliver the approved keys.

        Args:
            request: Decoded request envelope.
            request_id: Correlation id; generated if absent.

        Returns:
            FetchKeyResponse with one key per approved id (possibly none).

        Raises:
            KeyServerError: The first failing check, unchanged.
        """
        req_id = request_id or str(uuid.uuid4())
        stage = PipelineStage.START
        try:
            enc_key = decode_binary(request.enc_key, "enc_key")
            enc_verification_key = decode_binary(
                request.enc_verification_key, "enc_verification_key"
            )
            request_signature = decode_binary(request.request_signature, "request_signature")
            session_vk = session_verifying_key(request.certificate)

            verify_request_signature(
                request.ptb,
                enc_key,
                enc_verification_key,
                request_signature,
                session_vk,
                request_id=req_id,
            )
            stage = self._advance(req_id, PipelineStage.SIGNATURE_VERIFIED)

            transactions = parse_bundle(request.ptb)
            contract_address = contract_address_of(transactions)
            if not self.config.allow_multi_contract_bundles:
                require_single_contract(transactions, contract_address)
            stage = self._advance(req_id, PipelineStage.BUNDLE_PARSED)

            check_certificate(
                request.certificate,
                contract_address,
                now_ms=self._clock(),
                max_ttl_min=self.config.session_key_ttl_max,
            )
            stage = self._advance(req_id, PipelineStage.CERTIFICATE_VALID)

            user = decode_0x_hex(request.certificate.user, "certificate user", length=20)
            results = await self._simulation.simulate(
                transactions, user, self.config.network_id
            )
            check_policy_results(results)
            key_ids = extract_approved_ids(results, contract_address)
            stage = self._advance(req_id, PipelineStage.POLICY_EVALUATED)

            decryption_keys = self._delivery.derive_and_encrypt(key_ids, enc_key)
            self._advance(req_id, PipelineStage.KEYS_DELIVERED)
        except KeyServerError as e:
            log.warning(
                f"Fetch key request rejected: {e.code}: {e.message}",
                extra={"request_id": req_id, "stage": stage.value},
            )
            raise

        log.info(
            f"Fetch key request successful keys={len(decryption_keys)}",
            extra={"request_id": req_id},
        )
        return FetchKeyResponse(decryption_keys=decryption_keys)

    async def aclose(self) -> None:
        await self._simulation.aclose()

    @staticmethod
    def _advance(req_id: str, stage: PipelineStage) -> PipelineStage:
        log.debug(f"stage {stage.value}", extra={"request_id": req_id, "stage": stage.value})
        return stage
