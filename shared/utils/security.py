"""
shared/utils/security.py
Access-token codec and Razorpay checkout signatures.

Tokens are minted by the identity service; this API only verifies them.
create_access_token mirrors that service's claim layout.
"""

import hashlib
import hmac
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from config.settings import settings

ACCESS_TOKEN_TYPE = "access"


def create_access_token(
    user_id: str,
    role: str,
    email: str,
    extra: Optional[dict] = None,
) -> tuple[str, str]:
    """Returns (token, jti)."""
    issued_at = datetime.now(timezone.utc)
    jti = uuid.uuid4().hex
    claims = {
        **(extra or {}),
        "sub": str(user_id),
        "role": role,
        "email": email,
        "jti": jti,
        "type": ACCESS_TOKEN_TYPE,
        "iat": issued_at,
        "exp": issued_at + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM), jti


def verify_access_token(token: str) -> dict:
    """Decoded claims; raises JWTError on a bad signature, expiry or token type."""
    claims = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    if claims.get("type") != ACCESS_TOKEN_TYPE:
        raise JWTError(f"Expected an {ACCESS_TOKEN_TYPE} token")
    return claims


def compute_razorpay_signature(order_id: str, payment_id: str, key_secret: str) -> str:
    """Hex HMAC-SHA256 of "<order_id>|<payment_id>" keyed with the API secret."""
    message = f"{order_id}|{payment_id}".encode()
    return hmac.new(key_secret.encode(), message, hashlib.sha256).hexdigest()


def verify_razorpay_signature(order_id: str, payment_id: str, signature: str, key_secret: str) -> bool:
    if not (key_secret and signature):
        return False
    return hmac.compare_digest(
        compute_razorpay_signature(order_id, payment_id, key_secret), signature
    )
