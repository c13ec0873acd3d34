"""Optional payload decryption applied before a row is delivered."""
import json
from typing import Any, Dict, Mapping, Optional, Protocol


class Decryptor(Protocol):
    def decrypt(self, table: str, row: Dict[str, Any], options: Mapping[str, Any]) -> Mapping[str, Any]:
        ...


def maybe_decrypt(decryptor: Optional[Decryptor], table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Run ``payload`` through the decryptor; on any problem deliver it unchanged."""
    if decryptor is None:
        return payload
    try:
        row = decryptor.decrypt(
            table,
            {"payload": json.dumps(payload, ensure_ascii=False, separators=(",", ":"))},
            {"strict": False},
        )
        raw = row.get("payload") if isinstance(row, Mapping) else None
        decoded = json.loads(raw) if isinstance(raw, (str, bytes)) and raw.strip() else raw
    except Exception:  # noqa: BLE001
        return payload
    return decoded if isinstance(decoded, dict) and decoded else payload
