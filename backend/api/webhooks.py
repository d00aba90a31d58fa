# api/webhooks.py
# ============================================================================
# CLUBSPHERE: STRIPE WEBHOOK ROUTE
# ============================================================================

from fastapi import APIRouter, Depends, Request

from api.dependencies import get_workflow
from payments.webhooks import StripeWebhookProcessor
from services.workflow import JoinWorkflow

router = APIRouter(prefix="/api/stripe", tags=["webhooks"])


@router.post("/webhook")
async def stripe_webhook(request: Request, workflow: JoinWorkflow = Depends(get_workflow)):
    # Raw body: the signature covers the exact bytes Stripe sent
    payload = await request.body()
    processor = StripeWebhookProcessor(
        workflow, webhook_secret=getattr(request.app.state, "webhook_secret", None)
    )
    result = await processor.process(payload, request.headers.get("stripe-signature"))
    return {"received": True, **result}
