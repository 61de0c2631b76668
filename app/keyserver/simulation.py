"""Policy evaluation by transaction-bundle simulation.

The bundle is submitted to Tenderly's simulate-bundle API, executed as
the certificate's user. Each transaction yields one result; the call
trace of the top-level call carries the policy contract's input and
return data, which the key id extractor reads.

Request:
    POST {simulation_url}
    X-Access-Key: {access key}
    {"simulations": [{"network_id", "save": true, "save_if_fails": true,
                      "simulation_type": "quick", "from", "to", "input"}, ...]}

Response (fields used):
    {"simulation_results": [{"simulation": {"status": bool},
                             "transaction": {"call_trace": [{"input", "output"}],
                                             "transaction_info": {"logs": [...]}}}, ...]}

The client holds one httpx.AsyncClient and keeps no per-request state,
so a single instance serves concurrent requests.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx
from eth_utils import encode_hex

from app.core.config import KeyServerConfig

from .bundle import TransactionDescriptor
from .encoding import decode_0x_hex
from .exceptions import (
    PolicyDeniedError,
    SimulationMalformedError,
    SimulationUnavailableError,
)

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class SimulationResult:
    """Outcome of one simulated transaction.

    Attributes:
        success: Whether execution completed without revert.
        call_input: Input of the top-level call (selector + arguments).
        call_output: Return data of the top-level call.
        logs: Emitted logs, kept for diagnostics only.
    """
    success: bool
    call_input: bytes = b""
    call_output: bytes = b""
    logs: Tuple[Any, ...] = field(default_factory=tuple)


def _require_dict(value: Any, where: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise SimulationMalformedError(f"{where} must be an object")
    return value


def _parse_status(index: int, item: Any) -> bool:
    where = f"simulation_results[{index}]"
    item = _require_dict(item, where)
    simulation = _require_dict(item.get("simulation"), f"{where}.simulation")
    status = simulation.get("status")
    if not isinstance(status, bool):
        raise SimulationMalformedError(f"{where}.simulation.status must be a boolean")
    return status


def _parse_result(index: int, item: Dict[str, Any]) -> SimulationResult:
    """Read the top-level call of a successful simulation."""
    where = f"simulation_results[{index}]"
    transaction = _require_dict(item.get("transaction"), f"{where}.transaction")

    call_trace = transaction.get("call_trace")
    if not isinstance(call_trace, list) or not call_trace:
        raise SimulationMalformedError(f"{where}.transaction.call_trace is missing or empty")
    top_call = _require_dict(call_trace[0], f"{where}.transaction.call_trace[0]")

    if "input" not in top_call:
        raise SimulationMalformedError(f"{where} call trace has no input")
    call_input = decode_0x_hex(
        top_call["input"], f"{where} call input", error=SimulationMalformedError
    )

    raw_output = top_call.get("output")
    if raw_output is None:
        call_output = b""
    else:
        call_output = decode_0x_hex(
            raw_output, f"{where} call output", error=SimulationMalformedError
        )

    logs: Tuple[Any, ...] = ()
    info = transaction.get("transaction_info")
    if isinstance(info, dict) and isinstance(info.get("logs"), list):
        logs = tuple(info["logs"])

    return SimulationResult(
        success=True, call_input=call_input, call_output=call_output, logs=logs
    )


def parse_simulation_response(data: Any, expected_count: int) -> List[SimulationResult]:
    """Validate a simulate-bundle response and convert it to results.

    Every status is validated first. If any transaction failed, the
    bundle is denied as a whole, so call traces are not read at all and
    every result carries only its status.

    Args:
        data: Decoded JSON body.
        expected_count: Number of transactions submitted.

    Returns:
        One SimulationResult per submitted transaction, in order.

    Raises:
        SimulationMalformedError: Missing fields, wrong types or wrong count.
    """
    data = _require_dict(data, "simulation response")
    results = data.get("simulation_results")
    if not isinstance(results, list):
        raise SimulationMalformedError("simulation response has no simulation_results array")
    if len(results) != expected_count:
        raise SimulationMalformedError(
            f"Expected {expected_count} simulation results, got {len(results)}"
        )
    statuses = [_parse_status(i, item) for i, item in enumerate(results)]
    if not all(statuses):
        return [SimulationResult(success=status) for status in statuses]
    return [_parse_result(i, item) for i, item in enumerate(results)]


def check_policy_results(results: Sequence[SimulationResult]) -> None:
    """Reject the whole bundle if any simulated transaction failed.

    Raises:
        PolicyDeniedError: At least one result has success == False.
    """
    for index, result in enumerate(results):
        if not result.success:
            raise PolicyDeniedError(f"Transaction {index} simulation failed")


class SimulationClient:
    """Client for the external bundle simulation service."""

    def __init__(
        self,
        url: str,
        access_key: Optional[str],
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the simulation client.

        Args:
            url: simulate-bundle endpoint.
            access_key: Tenderly access key; None makes every call fail closed.
            timeout: Upper bound in seconds for one simulate call.
            transport: Optional httpx transport (tests inject a MockTransport).
        """
        self.url = url
        self.timeout = timeout
        self._access_key = access_key
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)

    @classmethod
    def from_config(
        cls,
        config: KeyServerConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "SimulationClient":
        return cls(
            url=config.simulation_url,
            access_key=config.simulation_access_key,
            timeout=config.simulation_timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "SimulationClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    @staticmethod
    def build_request_body(
        transactions: Sequence[TransactionDescriptor],
        acting_address: bytes,
        network_id: str,
    ) -> Dict[str, Any]:
        sender = encode_hex(acting_address)
        return {
            "simulations": [
                {
                    "network_id": network_id,
                    "save": True,
                    "save_if_fails": True,
                    "simulation_type": "quick",
                    "from": sender,
                    "to": encode_hex(tx.to) if tx.to is not None else None,
                    "input": encode_hex(tx.data),
                }
                for tx in transactions
            ]
        }

    async def _post(self, body: Dict[str, Any]) -> httpx.Response:
        return await self._client.post(
            self.url,
            json=body,
            headers={
                "Accept": "application/json",
                "Content-Type": "application/json",
                "X-Access-Key": self._access_key,
            },
        )

    async def simulate(
        self,
        transactions: Sequence[TransactionDescriptor],
        acting_address: bytes,
        network_id: str,
    ) -> List[SimulationResult]:
        """Simulate the bundle as `acting_address` on `network_id`.

        Cancelling the awaiting task cancels the in-flight HTTP request.

        Returns:
            One SimulationResult per transaction, in bundle order.

        Raises:
            SimulationUnavailableError: No credentials, timeout, transport
                failure or non-2xx response.
            SimulationMalformedError: Response body has the wrong shape.
        """
        if not self._access_key:
            raise SimulationUnavailableError("Simulation access key is not configured")

        body = self.build_request_body(transactions, acting_address, network_id)
        log.debug(
            f"Submitting {len(transactions)} transaction(s) for simulation "
            f"on network {network_id}"
        )

        try:
            response = await asyncio.wait_for(self._post(body), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            raise SimulationUnavailableError(
                f"Simulation timed out after {self.timeout}s"
            )
        except httpx.RequestError as e:
            raise SimulationUnavailableError(f"Simulation request failed: {type(e).__name__}")

        if response.status_code in (401, 403):
            raise SimulationUnavailableError(
                f"Simulation service rejected credentials: HTTP {response.status_code}"
            )
        if not 200 <= response.status_code < 300:
            raise SimulationUnavailableError(
                f"Simulation service returned HTTP {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise SimulationMalformedError(f"Simulation response is not JSON: {e}")

        results = parse_simulation_response(data, len(transactions))
        for index, result in enumerate(results):
            log.debug(
                f"Simulation {index}: success={result.success} "
                f"input_len={len(result.call_input)} output={result.call_output.hex()}"
            )
        return results
