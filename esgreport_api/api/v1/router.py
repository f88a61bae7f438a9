from fastapi import APIRouter

from esgreport_api.api.v1.endpoints import billing, health, invoices, webhooks

router = APIRouter()
router.include_router(health.router)
router.include_router(webhooks.router)
router.include_router(billing.router)
router.include_router(invoices.router)
