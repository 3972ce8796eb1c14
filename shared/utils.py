from __future__ import annotations
import hashlib
import secrets
from typing import Optional

# ========================================
#           ID AND NONCE HELPERS
# ========================================


def random_number(length: int = 24) -> str:
    """
    Returns a string of `length` random decimal digits.

    Used for request ids and raw app keys, which the wallet treats as opaque strings.
    """
    if length < 1:
        raise ValueError("length must be positive")
    return "".join(secrets.choice("0123456789") for _ in range(length))


def sha256_hex(text: str) -> str:
    """Hex-encoded SHA-256 of the UTF-8 encoding of `text`."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


# ========================================
#           INPUT VALIDATION HELPERS
# ========================================

def is_port(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 0 < value <= 65535


def is_hostport(s: str) -> bool:
    """
    Accepts 'hostname:port' or 'A.B.C.D:port'.

    Examples: "localhost:50005", "127.0.0.1:50005", "local.get-scatter.com:50006"
    """
    try:
        if ':' not in s:
            return False
        host, port_s = s.rsplit(':', 1)
        if not host:
            return False
        return is_port(int(port_s))
    except ValueError:
        return False


def parse_hostport(s: str) -> Optional[tuple[str, int]]:
    if not is_hostport(s):
        return None
    host, port_s = s.rsplit(':', 1)
    return host, int(port_s)
