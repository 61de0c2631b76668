"""Unit tests for approved key id extraction."""

import pytest

from app.keyserver.bundle import seal_approve_calldata
from app.keyserver.crypto import create_full_id, pad_address
from app.keyserver.exceptions import PolicyCallInvalidError
from app.keyserver.key_ids import extract_approved_ids, is_approved, policy_key_id
from app.keyserver.simulation import SimulationResult

from conftest import CONTRACT, policy_id

TRUE = (1).to_bytes(32, "big")
FALSE = bytes(32)


def _result(n: int, output: bytes = TRUE, success: bool = True) -> SimulationResult:
    return SimulationResult(
        success=success, call_input=seal_approve_calldata(policy_id(n)), call_output=output
    )


class TestIsApproved:
    def test_exact_true(self):
        assert is_approved(_result(1))

    def test_false(self):
        assert not is_approved(_result(1, output=FALSE))

    def test_empty_output(self):
        assert not is_approved(_result(1, output=b""))

    def test_short_true(self):
        assert not is_approved(_result(1, output=b"\x01"))

    def test_longer_blob_containing_true(self):
        assert not is_approved(_result(1, output=TRUE + FALSE))
        assert not is_approved(_result(1, output=FALSE + TRUE))

    def test_failed_simulation_never_approves(self):
        assert not is_approved(_result(1, success=False))


class TestPolicyKeyId:
    def test_reads_first_argument(self):
        assert policy_key_id(seal_approve_calldata(policy_id(9))) == policy_id(9)

    def test_ignores_trailing_bytes(self):
        data = seal_approve_calldata(policy_id(9)) + b"\xff" * 32
        assert policy_key_id(data) == policy_id(9)

    def test_short_input(self):
        with pytest.raises(PolicyCallInvalidError, match="35 bytes"):
            policy_key_id(b"\x00" * 35)


class TestExtractApprovedIds:
    def test_full_id_is_padded_contract_then_id(self):
        ids = extract_approved_ids([_result(1)], CONTRACT)
        assert ids == [bytes(12) + CONTRACT + policy_id(1)]
        assert ids == [create_full_id(pad_address(CONTRACT), policy_id(1))]

    def test_skips_unapproved_results(self):
        results = [_result(1), _result(2, output=FALSE), _result(3)]
        ids = extract_approved_ids(results, CONTRACT)
        assert [i[32:] for i in ids] == [policy_id(1), policy_id(3)]

    def test_duplicates_kept(self):
        ids = extract_approved_ids([_result(4), _result(4)], CONTRACT)
        assert len(ids) == 2
        assert ids[0] == ids[1]

    def test_nothing_approved(self):
        assert extract_approved_ids([_result(1, output=FALSE)], CONTRACT) == []
        assert extract_approved_ids([], CONTRACT) == []

    def test_deterministic(self):
        results = [_result(1), _result(2)]
        assert extract_approved_ids(results, CONTRACT) == extract_approved_ids(results, CONTRACT)

    def test_approved_result_with_short_input(self):
        bad = SimulationResult(success=True, call_input=b"\x00" * 4, call_output=TRUE)
        with pytest.raises(PolicyCallInvalidError):
            extract_approved_ids([bad], CONTRACT)

    def test_unapproved_short_input_is_ignored(self):
        bad = SimulationResult(success=True, call_input=b"", call_output=FALSE)
        assert extract_approved_ids([bad], CONTRACT) == []

    def test_custom_full_id(self):
        ids = extract_approved_ids([_result(1)], CONTRACT, full_id=lambda pkg, inner: inner)
        assert ids == [policy_id(1)]
