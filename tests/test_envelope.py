from datetime import datetime

import pytest

from outbox_relay.domain.models.envelope import CREATED_AT_HEADER, MessageEnvelope


def test_wrap_stamps_created_at():
    envelope = MessageEnvelope.wrap("order.created", {"id": 1}, {"trace": "abc"})
    assert envelope.headers["trace"] == "abc"
    stamp = datetime.fromisoformat(envelope.headers[CREATED_AT_HEADER])
    assert stamp.tzinfo is not None


def test_wrap_keeps_given_created_at():
    envelope = MessageEnvelope.wrap("t", {}, {CREATED_AT_HEADER: "2024-01-01T00:00:00+00:00"})
    assert envelope.headers[CREATED_AT_HEADER] == "2024-01-01T00:00:00+00:00"


def test_envelope_is_read_only():
    envelope = MessageEnvelope.wrap("t", {"a": 1})
    with pytest.raises(TypeError):
        envelope.headers["x"] = "y"
    with pytest.raises(AttributeError):
        envelope.topic = "other"


def test_to_dict():
    envelope = MessageEnvelope.wrap("t", {"a": 1}, {CREATED_AT_HEADER: "now", "k": "v"})
    assert envelope.to_dict() == {"topic": "t", "payload": {"a": 1}, "headers": {CREATED_AT_HEADER: "now", "k": "v"}}


def test_payload_is_a_read_only_copy():
    source = {"order": {"id": 1}}
    envelope = MessageEnvelope.wrap("t", source)

    with pytest.raises(TypeError):
        envelope.payload["order"] = {}
    source["order"]["id"] = 2
    assert envelope.payload["order"] == {"id": 1}

    exported = envelope.to_dict()
    exported["payload"]["order"]["id"] = 3
    assert envelope.payload["order"] == {"id": 1}
