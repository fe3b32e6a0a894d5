"""API token verification against the configured allowlist."""

import secrets
from typing import Iterable


def verify_api_token(token: str | None, allowed_tokens: Iterable[str]) -> bool:
    """Check a supplied token against the allowlist in constant time per entry."""
    if not token:
        return False
    matched = False
    for allowed in allowed_tokens:
        if secrets.compare_digest(token.encode("utf-8"), allowed.encode("utf-8")):
            matched = True
    return matched
