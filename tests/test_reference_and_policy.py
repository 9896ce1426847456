from __future__ import annotations

from datetime import date

import pytest

from portflow.domain.models import Role
from portflow.domain.policy import POLICY, is_allowed
from portflow.domain.reference import build_reference, is_valid_reference, luhn_check_digit


def test_luhn_check_digit_matches_known_value() -> None:
    assert luhn_check_digit("7992739871") == 3


def test_reference_format_and_check_digit() -> None:
    reference = build_reference(date(2030, 6, 10), 42)

    assert reference.startswith("BK-20300610-000042-")
    assert is_valid_reference(reference)


def test_mistyped_reference_fails_validation() -> None:
    reference = build_reference(date(2030, 6, 10), 42)
    tampered = reference.replace("000042", "000024")

    assert not is_valid_reference(tampered)
    assert not is_valid_reference("BK-2030-42-1")


def test_sequence_must_be_positive() -> None:
    with pytest.raises(ValueError):
        build_reference(date(2030, 6, 10), 0)


def test_references_from_distinct_sequences_differ() -> None:
    references = {build_reference(date(2030, 6, 10), sequence) for sequence in range(1, 200)}
    assert len(references) == 199


@pytest.mark.parametrize(
    ("role", "operation", "expected"),
    [
        (Role.OPERATOR, "booking:confirm", True),
        (Role.CARRIER, "booking:confirm", False),
        (Role.CARRIER, "booking:create", True),
        (Role.DRIVER, "booking:create", False),
        (Role.CARRIER, "booking:cancel", True),
        (Role.OPERATOR, "booking:cancel", False),
        (Role.OPERATOR, "booking:override", True),
        (Role.DRIVER, "qr:generate", True),
        (Role.DRIVER, "qr:scan", False),
        (Role.OPERATOR, "logs:read", False),
        (Role.ADMIN, "logs:read", True),
    ],
)
def test_policy_table(role: str, operation: str, expected: bool) -> None:
    assert is_allowed(role, operation) is expected


def test_unknown_operation_is_denied() -> None:
    assert not is_allowed(Role.ADMIN, "booking:teleport")


def test_admin_is_allowed_everything() -> None:
    assert all(is_allowed(Role.ADMIN, operation) for operation in POLICY)
