"""
Stripe Webhook Endpoint

Provides:
- OPTIONS /webhooks/stripe - CORS preflight
- POST /webhooks/stripe - Verify, route and apply a Stripe event

**SECURITY**: no user authentication is possible for provider callbacks.
Deliveries are authenticated by their Stripe signature against the platform
secret, then the connected-account secret. The raw body is verified exactly
as received.
"""

from typing import Any

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response
from fastapi.responses import JSONResponse

from tradiepay.modules.billing.domain.billing.events import decode_event
from tradiepay.modules.billing.domain.billing.processor import (
    WebhookDependencies,
    build_webhook_dependencies,
)
from tradiepay.modules.billing.domain.billing.signature import SIGNATURE_HEADER
from tradiepay.shared.core.config import get_settings

logger = structlog.get_logger()
router = APIRouter(tags=["Webhooks"])

WEBHOOK_PATH = "/webhooks/stripe"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": (
        "authorization, x-client-info, apikey, content-type, stripe-signature"
    ),
}


def get_webhook_dependencies(request: Request) -> WebhookDependencies:
    """Dependencies built at startup, or on first request if startup could not build them."""
    deps = getattr(request.app.state, "webhook_dependencies", None)
    if deps is None:
        deps = build_webhook_dependencies(get_settings())
        request.app.state.webhook_dependencies = deps
    return deps


@router.options(WEBHOOK_PATH, include_in_schema=False)
async def stripe_webhook_preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


@router.post(WEBHOOK_PATH)
async def handle_stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    deps: WebhookDependencies = Depends(get_webhook_dependencies),
) -> Any:
    """
    Handle a Stripe webhook delivery.

    Every authenticated event is answered with 200, including kinds this
    service ignores, so Stripe does not keep redelivering them. The
    settlement email is sent after the response and cannot change it.
    """
    payload = await request.body()
    verified = deps.verifier.verify(payload, request.headers.get(SIGNATURE_HEADER))
    event = decode_event(verified)

    with structlog.contextvars.bound_contextvars(
        event_id=event.event_id,
        event_type=event.event_type,
        trust_domain=event.trust_domain.value,
    ):
        logger.info("stripe_webhook_received", account=event.account, livemode=event.livemode)
        result = await deps.processor.process(event)

    if result.settlement is not None:
        background_tasks.add_task(deps.notifier.invoice_settled, result.settlement)

    return JSONResponse({"received": True}, headers=CORS_HEADERS)
