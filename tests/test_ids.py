import uuid

import pytest

from outbox_relay.support.ids import (
    NAMESPACE_DNS,
    is_uuid,
    new_deterministic_id,
    new_random_id,
    normalize,
    normalize_fixed_string,
)


def test_random_ids_are_v4_and_distinct():
    a, b = new_random_id(), new_random_id()
    assert a != b
    assert uuid.UUID(a).version == 4
    assert is_uuid(a)


def test_is_uuid_checks_version_and_variant():
    assert is_uuid("6BA7B810-9DAD-11D1-80B4-00C04FD430C8")
    assert is_uuid("  6ba7b810-9dad-11d1-80b4-00c04fd430c8 ")
    assert not is_uuid("")
    assert not is_uuid("not-a-uuid")
    # version nibble 0 and 6 are rejected
    assert not is_uuid("6ba7b810-9dad-01d1-80b4-00c04fd430c8")
    assert not is_uuid("6ba7b810-9dad-61d1-80b4-00c04fd430c8")
    # variant must be 8, 9, a or b
    assert not is_uuid("6ba7b810-9dad-11d1-c0b4-00c04fd430c8")


def test_deterministic_id_matches_uuid5():
    expected = str(uuid.uuid5(uuid.NAMESPACE_DNS, "python.org"))
    assert new_deterministic_id(NAMESPACE_DNS, "python.org") == expected
    assert new_deterministic_id(NAMESPACE_DNS.upper(), "python.org") == expected


def test_deterministic_id_rejects_bad_namespace():
    with pytest.raises(ValueError, match="Invalid UUID namespace."):
        new_deterministic_id("nope", "x")


def test_normalize_keeps_existing_uuid_lowercased():
    value = "6BA7B810-9DAD-11D1-80B4-00C04FD430C8"
    assert normalize(value, "salt") == value.lower()
    assert normalize(value) == value.lower()


def test_normalize_is_stable_and_salted():
    first = normalize("order-42", "outbox|order.created")
    assert first == normalize("order-42", "outbox|order.created")
    assert first != normalize("order-42", "outbox|order.paid")
    assert first == str(uuid.uuid5(uuid.NAMESPACE_DNS, "outbox|order.created|order-42"))
    assert normalize("order-42") == str(uuid.uuid5(uuid.NAMESPACE_DNS, "order-42"))
    assert is_uuid(first)


def test_normalize_fixed_string():
    assert normalize_fixed_string("  orders ", 64, "outbox") == "orders"
    assert normalize_fixed_string("   ", 64, "outbox") == "outbox"

    long_value = "t" * 80
    hashed = normalize_fixed_string(long_value, 64, "outbox")
    assert len(hashed) == 64
    assert hashed == normalize_fixed_string(long_value, 64, "outbox")
    assert len(normalize_fixed_string(long_value, 10, "outbox")) == 10
    assert len(normalize_fixed_string("s" * 200, 100, "inbox")) == 64
