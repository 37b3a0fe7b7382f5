from __future__ import annotations

import hashlib
import hmac
import time

from facetloop.query.errors import ValidationError


FILTER_ACTION = "filter_items"


def _signature(secret: str, action: str, issued_at: int) -> str:
    msg = f"{action}:{issued_at}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def issue_token(secret: str, action: str = FILTER_ACTION, now: float | None = None) -> str:
    issued_at = int(now if now is not None else time.time())
    return f"{issued_at}.{_signature(secret, action, issued_at)}"


def verify_token(secret: str, token: object, action: str = FILTER_ACTION, max_age: int = 12 * 3600,
                 now: float | None = None) -> None:
    if not isinstance(token, str) or "." not in token:
        raise ValidationError("Security token is missing.")
    ts_text, sig = token.split(".", 1)
    try:
        issued_at = int(ts_text)
    except ValueError:
        raise ValidationError("Security token is malformed.") from None
    if not hmac.compare_digest(sig, _signature(secret, action, issued_at)):
        raise ValidationError("Security token is invalid.")
    current = now if now is not None else time.time()
    if current - issued_at > max_age:
        raise ValidationError("Security token has expired.")
