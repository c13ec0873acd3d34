import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

CREATED_AT_HEADER = "x-created-at"


@dataclass(frozen=True)
class MessageEnvelope:
    """Topic + payload + headers, the unit handed to a transport or scheduler.

    ``payload`` and ``headers`` are read-only views; ``wrap`` copies its inputs.
    """

    topic: str
    payload: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    headers: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def wrap(
        cls,
        topic: str,
        payload: Mapping[str, Any],
        headers: Optional[Mapping[str, Any]] = None,
    ) -> "MessageEnvelope":
        merged = dict(headers or {})
        if merged.get(CREATED_AT_HEADER) is None:
            merged[CREATED_AT_HEADER] = datetime.now(timezone.utc).isoformat(timespec="seconds")
        return cls(
            topic=topic,
            payload=MappingProxyType(copy.deepcopy(dict(payload))),
            headers=MappingProxyType(merged),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topic": self.topic,
            "payload": copy.deepcopy(dict(self.payload)),
            "headers": dict(self.headers),
        }
