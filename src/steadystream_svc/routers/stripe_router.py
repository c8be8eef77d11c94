import os
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request, status, Depends
from pydantic import BaseModel

from steadystream_svc.stripe_integration import StripeIntegration, frontend_url
from steadystream_svc.models.base import get_db
from steadystream_svc.models.payment import Payment
from steadystream_svc.models.profile import Profile
from steadystream_svc.plans import STRIPE_PLANS
from steadystream_svc.stripe_event_processor import process_event
from steadystream_svc.subscription_service import commit

router = APIRouter()


class CheckoutRequest(BaseModel):
    plan_id: Optional[str] = None
    user_id: Optional[str] = None
    amount: Optional[float] = None
    currency: str = 'usd'


class CreatePaymentRequest(BaseModel):
    userId: Optional[str] = None
    planId: Optional[str] = None
    customerEmail: Optional[str] = None
    customerName: Optional[str] = None
    isRecurring: bool = False
    onboardingData: Optional[Dict[str, Any]] = None


@router.post("/checkout", status_code=200)
async def create_checkout(checkout_request: CheckoutRequest, db=Depends(get_db)):
    if not checkout_request.plan_id or not checkout_request.user_id or not checkout_request.amount:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required fields")

    payment = Payment(
        user_id=checkout_request.user_id,
        plan_id=checkout_request.plan_id,
        amount=checkout_request.amount,
        currency=checkout_request.currency,
        status='pending',
        provider='stripe',
    )
    db.add(payment)
    commit(db)

    stripe_integration = StripeIntegration()
    try:
        session = stripe_integration.create_checkout_session(
            user_id=checkout_request.user_id,
            plan_id=checkout_request.plan_id,
            product_name=f"SteadyStream TV - {checkout_request.plan_id.capitalize()} Plan",
            description='Monthly subscription to SteadyStream TV',
            unit_amount=int(round(checkout_request.amount * 100)),
            currency=checkout_request.currency,
            metadata={'payment_id': payment.id},
        )
    except Exception as e:
        logging.error(e, exc_info=True)
        payment.status = 'failed'
        db.add(payment)
        commit(db)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    payment.provider_payment_id = session['id']
    db.add(payment)
    commit(db)
    return {"checkout_url": session['url'], "payment_id": payment.id, "session_id": session['id']}


@router.post("/create-payment", status_code=200)
async def create_payment(payment_request: CreatePaymentRequest, request: Request, db=Depends(get_db)):
    if not payment_request.userId or not payment_request.planId:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required fields")
    plan = STRIPE_PLANS.get(payment_request.planId)
    if plan is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid plan selected")

    origin = (request.headers.get('origin') or frontend_url()).rstrip('/')
    profile = db.query(Profile).filter(Profile.id == payment_request.userId).first()
    payment = Payment(
        user_id=payment_request.userId,
        plan_id=payment_request.planId,
        amount=plan['price'] / 100,
        currency='usd',
        status='pending',
        provider='stripe',
        payment_metadata={'recurring': payment_request.isRecurring, 'onboarding': payment_request.onboardingData},
    )
    db.add(payment)
    commit(db)

    stripe_integration = StripeIntegration()
    try:
        customer_id = profile.stripe_customer_id if profile is not None else None
        if not customer_id:
            customer = stripe_integration.create_customer(
                payment_request.customerEmail, payment_request.customerName, payment_request.userId,
            )
            customer_id = customer['id']
            if profile is not None:
                profile.stripe_customer_id = customer_id
                db.add(profile)
                commit(db)

        session = stripe_integration.create_checkout_session(
            user_id=payment_request.userId,
            plan_id=payment_request.planId,
            product_name=plan['name'],
            description=plan['description'],
            unit_amount=plan['price'],
            customer_id=customer_id,
            recurring=payment_request.isRecurring,
            metadata={'payment_id': payment.id, 'userId': payment_request.userId},
            success_url=f"{origin}/payment-success?session_id={{CHECKOUT_SESSION_ID}}&user_id={payment_request.userId}",
            cancel_url=f"{origin}/onboarding?cancelled=true",
        )
    except Exception as e:
        logging.error(e, exc_info=True)
        payment.status = 'failed'
        db.add(payment)
        commit(db)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    payment.provider_payment_id = session['id']
    db.add(payment)
    commit(db)
    logging.info(f"Checkout session {session['id']} created for user {payment_request.userId}")
    return {"url": session['url'], "sessionId": session['id']}


@router.post("/webhook", status_code=200)
async def process_webhook(request: Request, db=Depends(get_db)):
    payload_bytes = await request.body()
    payload = payload_bytes.decode('utf-8')
    sig_header = request.headers.get("Stripe-Signature")
    if not sig_header:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe-Signature header")
    endpoint_secret = os.getenv("STRIPE_ENDPOINT_SECRET")
    if not endpoint_secret:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Stripe endpoint secret not configured")
    stripe_integration = StripeIntegration()
    try:
        event = stripe_integration.process_webhook_event(payload, sig_header, endpoint_secret)
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    try:
        process_event(event, db)
        event_type = event.get('type', '')
        if event_type == 'invoice.payment_succeeded':
            sub_id = event.get('data', {}).get('object', {}).get('subscription')
            metadata = {"subscription_id": sub_id, "status": "active"}
        elif event_type == 'customer.subscription.deleted':
            sub_id = event.get('data', {}).get('object', {}).get('subscription')
            metadata = {"subscription_id": sub_id, "status": "cancelled"}
        elif event_type == 'checkout.session.completed':
            session_metadata = event.get('data', {}).get('object', {}).get('metadata') or {}
            metadata = {"payment_id": session_metadata.get('payment_id'), "status": "succeeded"}
        else:
            metadata = {}
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Error processing webhook event")

    return {"success": True, "event": event, "metadata": metadata}


class SubscriptionUpdateRequest(BaseModel):
    metadata: dict


@router.get("/subscription/{subscription_id}", status_code=200)
async def get_subscription(subscription_id: str):
    stripe_integration = StripeIntegration()
    try:
        subscription = stripe_integration.retrieve_subscription(subscription_id)
        return {"success": True, "subscription": subscription}
    except ValueError as ve:
        logging.error(ve, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.put("/subscription/{subscription_id}", status_code=200)
async def update_subscription(subscription_id: str, update_request: SubscriptionUpdateRequest):
    stripe_integration = StripeIntegration()
    try:
        updated_subscription = stripe_integration.update_subscription(subscription_id, update_request.model_dump(exclude_unset=True))
        return {"success": True, "subscription": updated_subscription}
    except ValueError as ve:
        logging.error(ve, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.delete("/subscription/{subscription_id}", status_code=200)
async def cancel_subscription(subscription_id: str):
    stripe_integration = StripeIntegration()
    try:
        canceled_subscription = stripe_integration.cancel_subscription(subscription_id)
        return {"success": True, "subscription": canceled_subscription}
    except ValueError as ve:
        logging.error(ve, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
