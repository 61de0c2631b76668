"""Transaction bundle codec.

The client submits its policy calls as an opaque `ptb` string:

    base64( utf8( json.dumps([{"to": "0x<40 hex>", "data": "0x<hex>"}, ...]) ) )

Order is significant. The recipient of the first transaction is the
policy contract; it is what the session certificate is bound to and
what approved key ids are namespaced under.

Only `to` and `data` are load-bearing. Other fields (value, gas, ...)
are accepted and ignored.
"""

import base64
import json
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from eth_utils import encode_hex, keccak

from app.core.config import MAX_BUNDLE_BYTES, SEAL_APPROVE_SIGNATURE

from .encoding import check_json_shape, decode_0x_hex, decode_base64
from .exceptions import BundleFormatError, MissingRecipientError

log = logging.getLogger(__name__)

ADDRESS_LENGTH = 20
POLICY_KEY_ID_LENGTH = 32

# Array of flat objects
MAX_BUNDLE_DEPTH = 2


@dataclass(frozen=True)
class TransactionDescriptor:
    """One contract call from the bundle.

    Attributes:
        to: 20-byte recipient contract address, or None if absent.
        data: ABI call data (selector followed by encoded arguments).
    """
    to: Optional[bytes]
    data: bytes


def decode_bundle_bytes(ptb: str) -> bytes:
    """Base64-decode the bundle envelope to its raw JSON bytes."""
    return decode_base64(ptb, "transaction bundle", error=BundleFormatError)


def _parse_entry(index: int, entry: object) -> TransactionDescriptor:
    if not isinstance(entry, dict):
        raise BundleFormatError(
            f"Transaction {index} must be an object, got {type(entry).__name__}"
        )
    if "data" not in entry:
        raise BundleFormatError(f"Transaction {index} is missing 'data'")

    to = entry.get("to")
    if to is not None:
        to = decode_0x_hex(
            to, f"transaction {index} 'to'", length=ADDRESS_LENGTH, error=BundleFormatError
        )
    data = decode_0x_hex(entry["data"], f"transaction {index} 'data'", error=BundleFormatError)
    return TransactionDescriptor(to=to, data=data)


def parse_bundle(ptb: str) -> List[TransactionDescriptor]:
    """Decode a `ptb` string into its ordered transactions.

    Args:
        ptb: base64 of a UTF-8 JSON array of {"to", "data"} objects.

    Returns:
        TransactionDescriptors in bundle order.

    Raises:
        BundleFormatError: On any decoding or shape violation.
    """
    raw = decode_bundle_bytes(ptb)
    check_json_shape(
        raw,
        "Transaction bundle",
        max_bytes=MAX_BUNDLE_BYTES,
        max_depth=MAX_BUNDLE_DEPTH,
        error=BundleFormatError,
    )
    try:
        entries = json.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as e:
        raise BundleFormatError(f"Transaction bundle is not UTF-8: {e}")
    except json.JSONDecodeError as e:
        raise BundleFormatError(f"Transaction bundle is not valid JSON: {e}")

    if not isinstance(entries, list):
        raise BundleFormatError(
            f"Transaction bundle must be a JSON array, got {type(entries).__name__}"
        )

    transactions = [_parse_entry(i, entry) for i, entry in enumerate(entries)]
    log.debug(f"Parsed transaction bundle with {len(transactions)} transaction(s)")
    return transactions


def contract_address_of(transactions: Sequence[TransactionDescriptor]) -> bytes:
    """Return the recipient of the first transaction.

    Raises:
        MissingRecipientError: Bundle is empty or the first entry has no `to`.
    """
    if not transactions:
        raise MissingRecipientError("Transaction bundle is empty")
    first = transactions[0].to
    if first is None:
        raise MissingRecipientError("First transaction has no recipient")
    return first


def first_contract_address(ptb: str) -> bytes:
    """Policy contract address of an encoded bundle."""
    return contract_address_of(parse_bundle(ptb))


def require_single_contract(
    transactions: Sequence[TransactionDescriptor], contract_address: bytes
) -> None:
    """Reject bundles whose transactions leave the policy contract.

    Only the first recipient is bound into the certificate message, so a
    call to another contract would be evaluated without the user having
    consented to that contract.
    """
    for index, tx in enumerate(transactions):
        if tx.to != contract_address:
            raise BundleFormatError(
                f"Transaction {index} targets a different contract than transaction 0"
            )


def encode_bundle(transactions: Sequence[TransactionDescriptor]) -> str:
    """Client-side inverse of parse_bundle."""
    entries = [
        {
            "to": encode_hex(tx.to) if tx.to is not None else None,
            "data": encode_hex(tx.data),
        }
        for tx in transactions
    ]
    return base64.b64encode(json.dumps(entries).encode("utf-8")).decode("ascii")


def seal_approve_selector() -> bytes:
    """4-byte selector of seal_approve(bytes32)."""
    return keccak(text=SEAL_APPROVE_SIGNATURE)[:4]


def seal_approve_calldata(policy_key_id: bytes) -> bytes:
    """ABI call data for seal_approve(bytes32 id)."""
    if len(policy_key_id) != POLICY_KEY_ID_LENGTH:
        raise ValueError(f"policy key id must be {POLICY_KEY_ID_LENGTH} bytes")
    return seal_approve_selector() + policy_key_id
