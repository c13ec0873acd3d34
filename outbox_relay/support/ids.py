"""UUID helpers used to derive dedup keys."""
import hashlib
import re
import uuid

NAMESPACE_DNS = "6ba7b810-9dad-11d1-80b4-00c04fd430c8"

_UUID_RE = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}$"
)


def is_uuid(value: str) -> bool:
    v = value.strip()
    if not v:
        return False
    return _UUID_RE.match(v) is not None


def new_random_id() -> str:
    return str(uuid.uuid4())


def new_deterministic_id(namespace: str, name: str) -> str:
    """Name-based (v5) UUID: SHA-1 over the namespace bytes followed by ``name``."""
    ns = namespace.strip().lower()
    if not is_uuid(ns):
        raise ValueError("Invalid UUID namespace.")
    return str(uuid.uuid5(uuid.UUID(ns), name))


def normalize(value: str, salt: str = "") -> str:
    """Return ``value`` lower-cased when it already is a UUID, else a stable v5 derived from salt and value.

    The same (value, salt) pair always yields the same key, which makes it safe
    to use for dedup constraints.
    """
    candidate = value.strip().lower()
    if candidate and is_uuid(candidate):
        return candidate

    name = f"{salt}|{value}" if salt else value
    return new_deterministic_id(NAMESPACE_DNS, name)


def normalize_fixed_string(value: str, max_len: int, fallback: str) -> str:
    """Fit ``value`` into a column of ``max_len`` chars, hashing it when it is too long."""
    v = value.strip()
    if not v:
        v = fallback
    if len(v) <= max_len:
        return v
    return hashlib.sha256(v.encode("utf-8")).hexdigest()[: min(max_len, 64)]
