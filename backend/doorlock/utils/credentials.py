"""Session token generation and bearer credential derivation."""
import hashlib
import hmac
import secrets
import string
from typing import Optional

TOKEN_ALPHABET = string.ascii_uppercase + string.ascii_lowercase + string.digits


def generate_token(length: int) -> str:
    """Return a random token of ``length`` alphanumeric characters."""
    return "".join(secrets.choice(TOKEN_ALPHABET) for _ in range(length))


def derive_credential(device_id: str) -> str:
    """SHA-256 hex digest of the device ID, presented by the mobile app as its bearer credential."""
    return hashlib.sha256(device_id.encode("utf-8")).hexdigest()


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Extract the credential from an Authorization header.

    ``Bearer abc`` yields ``abc``; a header without a scheme is taken as-is.
    """
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) > 1:
        return parts[1]
    return authorization


def credentials_match(device_id: str, presented: Optional[str]) -> bool:
    """Check a presented credential against the one derived from ``device_id``."""
    if not presented:
        return False
    # compare_digest only accepts ASCII str, so compare the encoded bytes
    expected = derive_credential(device_id).encode("ascii")
    return hmac.compare_digest(expected, presented.encode("utf-8", "surrogateescape"))
