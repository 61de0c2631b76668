"""Approved key id extraction from simulation results.

A policy call is `seal_approve(bytes32 id)`. It approves by returning
ABI-encoded `true`, i.e. exactly 32 bytes equal to big-endian 1; any
other output (including `false`, empty output or a longer blob that
merely contains the encoding) is treated as not approved.

The approved id is the call's first argument, namespaced under the
policy contract by create_full_id(pad(contract), id).
"""

import logging
from typing import Callable, List, Sequence

from app.core.config import ABI_TRUE

from .exceptions import PolicyCallInvalidError
from .simulation import SimulationResult
from .crypto import create_full_id, pad_address

log = logging.getLogger(__name__)

SELECTOR_LENGTH = 4
POLICY_KEY_ID_LENGTH = 32

FullIdFn = Callable[[bytes, bytes], bytes]


def is_approved(result: SimulationResult) -> bool:
    return result.success and result.call_output == ABI_TRUE


def policy_key_id(call_input: bytes) -> bytes:
    """Return the bytes32 argument following the 4-byte selector.

    Raises:
        PolicyCallInvalidError: Input shorter than selector + 32 bytes.
    """
    end = SELECTOR_LENGTH + POLICY_KEY_ID_LENGTH
    if len(call_input) < end:
        raise PolicyCallInvalidError(
            f"Policy call input is {len(call_input)} bytes, expected at least {end}"
        )
    return call_input[SELECTOR_LENGTH:end]


def extract_approved_ids(
    results: Sequence[SimulationResult],
    contract_address: bytes,
    full_id: FullIdFn = create_full_id,
) -> List[bytes]:
    """Map approved simulation results to full key ids.

    Order follows the results; duplicates are kept. An empty list means
    nothing was approved, which is not an error.

    Raises:
        PolicyCallInvalidError: An approved result has malformed input.
    """
    package_id = pad_address(contract_address)
    key_ids = []
    for index, result in enumerate(results):
        if not is_approved(result):
            log.debug(f"Simulation {index} did not approve")
            continue
        key_ids.append(full_id(package_id, policy_key_id(result.call_input)))
    log.debug(f"Approved key ids: {len(key_ids)}")
    return key_ids
