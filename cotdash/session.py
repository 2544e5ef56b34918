"""
Authentication session and its on-disk persistence.

The session is an explicit value: the app loads it once, keeps it in
Streamlit's session state and hands it to every backend call. Only login and
logout write the store.
"""

import base64
import binascii
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

TOKEN_KEY = "auth_token"
ROLE_KEY = "user_role"


@dataclass(frozen=True)
class Session:
    """Bearer token plus the role the backend granted."""

    token: Optional[str] = None
    role: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        # No client-side expiry check; the backend rejects stale tokens
        return self.token is not None

    def auth_headers(self) -> dict:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}


ANONYMOUS = Session()


def role_from_token(token: str) -> Optional[str]:
    """
    Read the role claim from a JWT without verifying it.

    Looks at `role`, then the first entry of `roles`. Returns None for
    tokens that are not JWTs or carry no role.
    """
    parts = token.split(".")
    if len(parts) != 3:
        return None
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment))
    except (binascii.Error, ValueError):
        return None
    if not isinstance(claims, dict):
        return None

    role = claims.get("role")
    if not role and isinstance(claims.get("roles"), list) and claims["roles"]:
        role = claims["roles"][0]
    return str(role) if role else None


class SessionStore:
    """Persists the session as a small JSON document."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Session:
        if not self.path.exists():
            return ANONYMOUS
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read session file {self.path}: {e}")
            return ANONYMOUS
        if not isinstance(data, dict):
            return ANONYMOUS
        return Session(token=data.get(TOKEN_KEY), role=data.get(ROLE_KEY))

    def save(self, session: Session) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = {TOKEN_KEY: session.token}
        if session.role:
            payload[ROLE_KEY] = session.role
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(payload, f)

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)
