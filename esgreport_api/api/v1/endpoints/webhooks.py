from fastapi import APIRouter, Depends, Header, Request, Response, status
from fastapi.responses import JSONResponse

from esgreport_api.billing.errors import WebhookError, WebhookHandlingError
from esgreport_api.billing.webhooks import StripeWebhookProcessor
from esgreport_api.core.errors import sanitize_error
from esgreport_api.core.logging import get_logger
from esgreport_api.core.settings import get_settings

router = APIRouter()
logger = get_logger("api.webhooks")

STRIPE_WEBHOOK_PATH = "/webhooks/stripe"

WEBHOOK_CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, stripe-signature",
}


def get_webhook_processor() -> StripeWebhookProcessor:
    return StripeWebhookProcessor(webhook_secret=get_settings().STRIPE_WEBHOOK_SECRET)


webhook_processor_dependency = Depends(get_webhook_processor)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code, headers=WEBHOOK_CORS_HEADERS)


@router.options(STRIPE_WEBHOOK_PATH, include_in_schema=False)
async def stripe_webhook_preflight() -> Response:
    return Response(status_code=status.HTTP_200_OK, headers=WEBHOOK_CORS_HEADERS)


@router.post(STRIPE_WEBHOOK_PATH, include_in_schema=False)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None),
    processor: StripeWebhookProcessor = webhook_processor_dependency,
) -> JSONResponse:
    raw_body = await request.body()

    try:
        outcome = await processor.process(raw_body, stripe_signature)
    except WebhookHandlingError as exc:
        logger.error(
            "webhook.failed",
            exc_info=exc.__cause__ or exc,
            extra={"component": "webhooks", "event_type": exc.event_type, "error": exc.message},
        )
        return _error_response(exc.status_code, exc.message)
    except WebhookError as exc:
        logger.error(
            "webhook.rejected",
            extra={
                "component": "webhooks",
                "event_type": exc.event_type,
                "error_class": type(exc).__name__,
                "error": sanitize_error(exc, default_message="webhook error"),
            },
        )
        return _error_response(exc.status_code, exc.message)
    except Exception as exc:
        message = sanitize_error(exc, default_message="Webhook processing failed")
        logger.exception("webhook.failed", extra={"component": "webhooks", "event_type": None, "error": message})
        return _error_response(status.HTTP_400_BAD_REQUEST, message)

    logger.info(
        "webhook.acknowledged",
        extra={"component": "webhooks", "event_type": outcome.event_type, "outcome": outcome.status},
    )
    return JSONResponse({"received": True}, headers=WEBHOOK_CORS_HEADERS)
