"""
Signature verification for inbound Messenger webhooks.

Meta signs every webhook POST with the app secret and sends the digest in
``X-Hub-Signature-256: sha256=<hex>``. When ``FB_APP_SECRET`` is configured
the dependency rejects requests whose signature is missing or wrong.

Usage:
    @router.post("/facebook")
    async def facebook_webhook(
        ...,
        _: None = Depends(verify_facebook_signature),
    ):
        ...
"""
import hashlib
import hmac

from fastapi import Header, HTTPException, Request, status

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)


def compute_signature(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


async def verify_facebook_signature(
    request: Request,
    x_hub_signature_256: str | None = Header(None),
) -> None:
    """
    Verify ``X-Hub-Signature-256`` on Messenger webhook requests.

    - ``FB_APP_SECRET`` not set: skipped
    - header missing or not matching: 403 Forbidden
    """
    secret = settings.FB_APP_SECRET
    if not secret:
        return

    if not x_hub_signature_256:
        logger.warning("Messenger webhook request without X-Hub-Signature-256")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing webhook signature",
        )

    body = await request.body()
    if not hmac.compare_digest(x_hub_signature_256, compute_signature(body, secret)):
        logger.warning("Messenger webhook request with an invalid signature")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid webhook signature",
        )
