import hashlib
import hmac
import time
from typing import Dict, Optional

TIMESTAMP_HEADER = "X-Referral-Timestamp"
SIGNATURE_HEADER = "X-Referral-Signature"


class SigningSecretMissingError(RuntimeError):
    pass


def compute_signature(secret: str, timestamp: str, payload: str) -> str:
    """Hex HMAC-SHA256 over ``"{timestamp}.{payload}"``."""
    message = f"{timestamp}.{payload}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign_payload(secret: Optional[str], payload: str, timestamp: Optional[str] = None) -> Dict[str, str]:
    """Returns the signing headers for one attempt. The timestamp changes on every call."""
    if not secret:
        raise SigningSecretMissingError("No webhook signing secret is configured")
    ts = timestamp or str(int(time.time()))
    return {
        TIMESTAMP_HEADER: ts,
        SIGNATURE_HEADER: compute_signature(secret, ts, payload),
    }


def verify_signature(
    secret: str, payload: str, timestamp: str, signature: str, *, tolerance_seconds: Optional[int] = None
) -> bool:
    if tolerance_seconds is not None:
        try:
            if abs(time.time() - int(timestamp)) > tolerance_seconds:
                return False
        except ValueError:
            return False
    expected = compute_signature(secret, timestamp, payload)
    return hmac.compare_digest(expected, signature)
