# api/join.py
# ============================================================================
# CLUBSPHERE: JOIN & REGISTRATION ROUTES
# ============================================================================
# Free joins, payment intents, hosted checkout and their confirmations for
# clubs and events. First-time and repeated calls return the same shape.
# ============================================================================

from fastapi import APIRouter, Depends

from api.dependencies import get_workflow, require_member
from schemas.entities import TargetKind
from schemas.requests import CheckoutSuccessBody, ConfirmPaymentBody
from services.identity import Principal
from services.workflow import CheckoutResult, IntentResult, JoinOutcome, JoinWorkflow

router = APIRouter(prefix="/api", tags=["join"])


# =============================================================================
# CLUBS
# =============================================================================

@router.post("/clubs/{club_id}/join", response_model=JoinOutcome)
async def join_club(
    club_id: str,
    principal: Principal = Depends(require_member),
    workflow: JoinWorkflow = Depends(get_workflow),
):
    return await workflow.request_free_join(principal, TargetKind.CLUB, club_id)


@router.post("/clubs/{club_id}/create-payment-intent", response_model=IntentResult)
async def club_payment_intent(
    club_id: str,
    principal: Principal = Depends(require_member),
    workflow: JoinWorkflow = Depends(get_workflow),
):
    return await workflow.create_payment_intent(principal, TargetKind.CLUB, club_id)


@router.post("/clubs/{club_id}/join/confirm", response_model=JoinOutcome)
async def confirm_club_payment(
    club_id: str,
    body: ConfirmPaymentBody,
    principal: Principal = Depends(require_member),
    workflow: JoinWorkflow = Depends(get_workflow),
):
    return await workflow.confirm_payment(principal, TargetKind.CLUB, club_id, body.payment_intent_id)


@router.post("/clubs/{club_id}/create-checkout-session", response_model=CheckoutResult)
async def club_checkout(
    club_id: str,
    principal: Principal = Depends(require_member),
    workflow: JoinWorkflow = Depends(get_workflow),
):
    return await workflow.create_checkout_session(principal, TargetKind.CLUB, club_id)


@router.post("/clubs/{club_id}/checkout-success", response_model=JoinOutcome)
async def club_checkout_success(
    club_id: str,
    body: CheckoutSuccessBody,
    principal: Principal = Depends(require_member),
    workflow: JoinWorkflow = Depends(get_workflow),
):
    return await workflow.confirm_checkout_session(principal, TargetKind.CLUB, club_id, body.session_id)


# =============================================================================
# EVENTS
# =============================================================================

@router.post("/events/{event_id}/register", response_model=JoinOutcome)
async def register_event(
    event_id: str,
    principal: Principal = Depends(require_member),
    workflow: JoinWorkflow = Depends(get_workflow),
):
    return await workflow.request_free_join(principal, TargetKind.EVENT, event_id)


@router.post("/events/{event_id}/create-payment-intent", response_model=IntentResult)
async def event_payment_intent(
    event_id: str,
    principal: Principal = Depends(require_member),
    workflow: JoinWorkflow = Depends(get_workflow),
):
    return await workflow.create_payment_intent(principal, TargetKind.EVENT, event_id)


@router.post("/events/{event_id}/register/confirm", response_model=JoinOutcome)
async def confirm_event_payment(
    event_id: str,
    body: ConfirmPaymentBody,
    principal: Principal = Depends(require_member),
    workflow: JoinWorkflow = Depends(get_workflow),
):
    return await workflow.confirm_payment(principal, TargetKind.EVENT, event_id, body.payment_intent_id)


@router.post("/events/{event_id}/create-checkout-session", response_model=CheckoutResult)
async def event_checkout(
    event_id: str,
    principal: Principal = Depends(require_member),
    workflow: JoinWorkflow = Depends(get_workflow),
):
    return await workflow.create_checkout_session(principal, TargetKind.EVENT, event_id)


@router.post("/events/{event_id}/checkout-success", response_model=JoinOutcome)
async def event_checkout_success(
    event_id: str,
    body: CheckoutSuccessBody,
    principal: Principal = Depends(require_member),
    workflow: JoinWorkflow = Depends(get_workflow),
):
    return await workflow.confirm_checkout_session(principal, TargetKind.EVENT, event_id, body.session_id)
