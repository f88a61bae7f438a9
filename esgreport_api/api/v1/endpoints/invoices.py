from fastapi import APIRouter, Depends

from esgreport_api.api.v1.schemas.billing import InvoiceCreateIn, InvoiceCreateOut
from esgreport_api.auth.roles import PlatformRoleContext, enforce_platform_role
from esgreport_api.billing.invoices import generate_custom_invoice
from esgreport_api.core.supabase_jwt import VerifiedSupabaseAuth, verify_supabase_auth

router = APIRouter()
supabase_auth_dependency = Depends(verify_supabase_auth)


async def require_admin(auth: VerifiedSupabaseAuth = supabase_auth_dependency) -> PlatformRoleContext:
    return await enforce_platform_role(auth, "admin")


admin_dependency = Depends(require_admin)


@router.post("/admin/invoices")
async def create_invoice(
    payload: InvoiceCreateIn, admin: PlatformRoleContext = admin_dependency
) -> InvoiceCreateOut:
    invoice = await generate_custom_invoice(
        organization_id=str(payload.organization_id),
        created_by=admin.user_id,
        custom_charge_ids=[str(charge_id) for charge_id in payload.custom_charge_ids or []],
        amount=payload.amount,
        description=payload.description,
        due_date=payload.due_date,
    )
    return InvoiceCreateOut(invoice=invoice)
