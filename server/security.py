from __future__ import annotations

import hmac
from typing import Optional


def bearer_token(auth_header: Optional[str]) -> Optional[str]:
    header = auth_header or ""
    if not header.lower().startswith("bearer "):
        return None
    token = header.split(None, 1)[1].strip() if len(header.split(None, 1)) > 1 else ""
    return token or None


def verify_admin_token(presented: Optional[str], expected: Optional[str]) -> bool:
    """Constant-time comparison; an unset admin token locks the admin routes."""
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))
