"""FastAPI dependencies shared by the webhook and read routes.

Webhook routes depend on ``validate_webhook_signature`` (raw body, verified)
and ``get_event_processor``; read routes only need ``get_uow_factory``.
"""

from typing import Annotated, Callable

import structlog
from fastapi import Depends, Header, Request

from ratracer.core.config import Settings
from ratracer.services.exceptions import (
    AuthenticationError,
    ConfigurationError,
    MissingSignatureError,
)
from ratracer.services.metadata.blob_client import BlobStorageClient
from ratracer.services.webhooks.processor import WebhookProcessor
from ratracer.services.webhooks.signature import verify_webhook_signature
from ratracer.uow import UnitOfWork

logger = structlog.get_logger()


def get_settings() -> Settings:
    """Settings read from the environment on every request."""
    return Settings()  # type: ignore[call-arg]


async def validate_webhook_signature(
    request: Request,
    x_hook0_signature: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> bytes:
    """Validate the Hook0 webhook signature before processing the request.

    The dependency reads the raw request body and validates the HMAC-SHA256
    signature from the X-Hook0-Signature header. No payload parsing and no
    store access happen before the signature is accepted.

    Args:
        request: FastAPI Request object (contains raw body and headers)
        x_hook0_signature: Signature from X-Hook0-Signature header
        settings: Application settings (injected via dependency)

    Returns:
        Raw request body bytes (for further processing by the endpoint)

    Raises:
        MissingSignatureError: 400 if the signature header is absent
        ConfigurationError: 500 if no webhook secret is configured
        AuthenticationError: 401 if the signature is malformed, stale or wrong

    Example:
        >>> @router.post("/rat-mint")
        >>> async def rat_mint(raw_body: bytes = Depends(validate_webhook_signature)):
        ...     # Signature is validated - safe to process
        ...     envelope = parse_envelope(raw_body)
    """
    if not x_hook0_signature:
        logger.warning("webhook.signature_missing", path=request.url.path)
        raise MissingSignatureError("Missing X-Hook0-Signature header")

    if not settings.webhook_secret:
        logger.error("webhook.secret_not_configured", path=request.url.path)
        raise ConfigurationError("WEBHOOK_SECRET is not configured")

    # Must be the exact bytes received
    raw_body = await request.body()

    is_valid = verify_webhook_signature(
        raw_body=raw_body,
        signature_header=x_hook0_signature,
        secret=settings.webhook_secret,
        headers=request.headers,
        max_age_seconds=settings.signature_max_age,
    )
    if not is_valid:
        logger.warning("webhook.signature_invalid", path=request.url.path)
        raise AuthenticationError("Invalid webhook signature")

    return raw_body


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """UnitOfWork factory created by the lifespan handler.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.rats.get_by_token_id(token_id)
    """
    return request.app.state.uow_factory


def get_blob_client(request: Request) -> BlobStorageClient | None:
    """Get the metadata blob client from app state, if one was configured."""
    return getattr(request.app.state, "blob_client", None)


def get_event_processor(
    uow_factory=Depends(get_uow_factory),
    settings: Settings = Depends(get_settings),
    blob_client: BlobStorageClient | None = Depends(get_blob_client),
) -> WebhookProcessor:
    return WebhookProcessor(uow_factory=uow_factory, settings=settings, blob_client=blob_client)
