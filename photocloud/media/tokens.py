from __future__ import annotations

import hashlib
import hmac
from typing import Literal

TokenKind = Literal["asset", "recording"]

TOKEN_LENGTH = 48


class PublicTokenIssuer:
    """Derives unguessable public tokens from ``(kind, id, content generation)``.

    Tokens are a pure function of their inputs, so a content change that bumps
    the generation always yields a new address and the old one stops resolving.
    """

    def __init__(self, secret: str):
        if not secret:
            raise ValueError("public token secret must not be empty")
        self._key = secret.encode("utf-8")

    def issue(self, record_id: int, generation: int = 0, *, kind: TokenKind = "asset") -> str:
        if record_id is None:
            raise ValueError("cannot issue a token before the record has an id")
        message = f"{kind}:{record_id}:{generation}".encode("ascii")
        return hmac.new(self._key, message, hashlib.sha256).hexdigest()[:TOKEN_LENGTH]


__all__ = ["PublicTokenIssuer", "TOKEN_LENGTH"]
