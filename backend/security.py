import json
import hmac
import hashlib
import base64
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from werkzeug.security import generate_password_hash, check_password_hash
from config import SECRET_KEY, AUTH_TOKEN_TTL_HOURS
from errors import Unauthorized


class URLSafeSerializer:
    """Tiny URL-safe HMAC serializer.

    Encodes/decodes JSON payloads with an HMAC-SHA256 signature:
    token = base64url(payload) + "." + base64url(signature).
    """

    def __init__(self, secret_key, salt=""):
        """
        Args:
            secret_key (str): Secret bytes used for HMAC.
            salt (str): Optional salt mixed into the HMAC key.
        """
        self.secret_key = (secret_key or "").encode("utf-8")
        self.salt = salt or ""

    def _b64(self, data: bytes) -> str:
        """Return base64url-encoded string without padding."""
        return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")

    def _unb64(self, s: str) -> bytes:
        """Decode base64url string that may be missing padding."""
        s_bytes = s.encode("ascii")
        padding = b"=" * (-len(s_bytes) % 4)
        return base64.urlsafe_b64decode(s_bytes + padding)

    def _sign(self, payload: bytes) -> bytes:
        return hmac.new(self.secret_key + self.salt.encode("utf-8"), payload, hashlib.sha256).digest()

    def dumps(self, obj) -> str:
        """Serialize and sign an object.

        Args:
            obj (Any): JSON-serializable value.

        Returns:
            str: URL-safe token "<b64json>.<b64sig>".
        """
        payload = json.dumps(obj, separators=(",", ":"), sort_keys=True).encode("utf-8")
        return f"{self._b64(payload)}.{self._b64(self._sign(payload))}"

    def loads(self, token: str):
        """Verify signature and deserialize an object.

        Raises:
            ValueError: If token format or signature is invalid.
        """
        try:
            payload_b64, sig_b64 = token.rsplit(".", 1)
            payload = self._unb64(payload_b64)
            sig = self._unb64(sig_b64)
        except Exception:
            raise ValueError("Invalid token format")
        if not hmac.compare_digest(sig, self._sign(payload)):
            raise ValueError("Invalid signature")
        return json.loads(payload.decode("utf-8"))


auth_signer = URLSafeSerializer(secret_key=SECRET_KEY, salt="auth-token")
link_signer = URLSafeSerializer(secret_key=SECRET_KEY, salt="survey-link")

bearer = HTTPBearer(auto_error=False)


def _now_utc() -> datetime:
    """Return the current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)


# ------------------------
# Passwords
# ------------------------
def hash_password(plain_password: str) -> str:
    return generate_password_hash(plain_password)

def verify_password(plain_password: str, password_hash: str) -> bool:
    return check_password_hash(password_hash, plain_password)


# ------------------------
# Tokens
# ------------------------
def generate_auth_token(user_id: int) -> str:
    exp = _now_utc() + timedelta(hours=AUTH_TOKEN_TTL_HOURS)
    return auth_signer.dumps({"sub": user_id, "exp": int(exp.timestamp())})

def load_token_with_expiry(token: str) -> tuple[dict, bool]:
    """Decode a token and determine if it is expired.

    Returns:
        tuple[dict, bool]: (payload, expired_flag)

    Raises:
        ValueError: If token format/signature invalid.
    """
    data = auth_signer.loads(token)
    exp = int(data.get("exp", 0) or 0)
    expired = bool(exp and _now_utc().timestamp() > exp)
    return data, expired

def generate_link_hash(published_survey_name: Optional[str] = None) -> str:
    """Opaque participant link; the random nonce keeps it unique per publish."""
    return link_signer.dumps({"name": published_survey_name or "", "nonce": uuid.uuid4().hex})


# ------------------------
# Dependencies
# ------------------------
def require_authentication(creds: Optional[HTTPAuthorizationCredentials] = Depends(bearer)) -> int:
    """Resolve the bearer token to a user id or fail with 401."""
    if creds is None or not creds.credentials:
        raise Unauthorized("Valid authentication token required")
    try:
        data, expired = load_token_with_expiry(creds.credentials)
    except ValueError:
        raise Unauthorized("Valid authentication token required")
    if expired or "sub" not in data:
        raise Unauthorized("Valid authentication token required")
    return int(data["sub"])

def require_owner(user_id: int, owner_id: int, message: str = "You do not have access to this resource"):
    if user_id != owner_id:
        raise Unauthorized(message)
