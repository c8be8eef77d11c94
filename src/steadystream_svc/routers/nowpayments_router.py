import os
import json
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, status, Depends
from pydantic import BaseModel

from steadystream_svc.models.base import get_db
from steadystream_svc.models.payment import NowPaymentsRecord
from steadystream_svc.nowpayments import NowPaymentsClient, NowPaymentsError, verify_ipn_signature
from steadystream_svc.nowpayments_ipn import ProfileNotFound, process_ipn
from steadystream_svc.subscription_service import commit

router = APIRouter()


class InvoiceRequest(BaseModel):
    plan_id: str
    user_id: str
    pay_currency: str = 'btc'
    customer_email: Optional[str] = None


def _client() -> NowPaymentsClient:
    try:
        return NowPaymentsClient.from_env()
    except EnvironmentError as e:
        logging.error(e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post("/invoice", status_code=200)
async def create_invoice(invoice_request: InvoiceRequest, db=Depends(get_db)):
    client = _client()
    try:
        invoice = client.create_invoice(
            invoice_request.plan_id,
            invoice_request.pay_currency,
            invoice_request.user_id,
            customer_email=invoice_request.customer_email,
        )
    except ValueError as ve:
        logging.error(ve, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    finally:
        client.close()

    payment_id = invoice.get('payment_id') or invoice.get('id')
    if payment_id is None:
        logging.error(f"NOWPayments invoice without id: {invoice}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="NOWPayments returned an invoice without id")

    record = NowPaymentsRecord(
        payment_id=str(payment_id),
        order_id=invoice.get('order_id'),
        user_id=invoice_request.user_id,
        plan_id=invoice_request.plan_id,
        customer_email=invoice_request.customer_email,
        price_amount=invoice.get('price_amount'),
        price_currency=invoice.get('price_currency'),
        pay_currency=invoice.get('pay_currency'),
        payment_status='waiting',
        invoice_url=invoice.get('invoice_url'),
    )
    db.add(record)
    commit(db)
    return {"success": True, "invoice": invoice}


@router.get("/payment/{payment_id}", status_code=200)
async def get_payment_status(payment_id: str):
    client = _client()
    try:
        return {"success": True, "payment": client.get_payment_status(payment_id)}
    except NowPaymentsError as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    finally:
        client.close()


@router.get("/currencies", status_code=200)
async def get_currencies():
    client = _client()
    try:
        return {"success": True, "currencies": client.get_available_currencies()}
    finally:
        client.close()


@router.get("/min-amount", status_code=200)
async def get_minimum_amount(currency: str = 'btc'):
    client = _client()
    try:
        return {"success": True, "currency": currency.lower(), "min_amount": client.get_minimum_amount(currency)}
    finally:
        client.close()


@router.post("/webhook", status_code=200)
async def process_webhook(request: Request, db=Depends(get_db)):
    payload_bytes = await request.body()
    signature = request.headers.get("x-nowpayments-sig")
    if not signature:
        logging.error('NOWPayments IPN without x-nowpayments-sig header')
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing signature")
    ipn_secret = os.getenv("NOWPAYMENTS_IPN_SECRET")
    if not ipn_secret:
        logging.error('NOWPAYMENTS_IPN_SECRET not configured')
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="IPN secret not configured")

    try:
        payload = json.loads(payload_bytes)
    except ValueError as e:
        logging.error(f"Unparsable IPN body: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")
    if not isinstance(payload, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body")

    if not verify_ipn_signature(payload, signature, ipn_secret):
        logging.error(f"Invalid IPN signature for payment {payload.get('payment_id')}")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        result = process_ipn(payload, db)
    except ProfileNotFound as e:
        logging.error(e)
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ValueError as ve:
        logging.error(ve, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Error processing IPN")

    return {"success": True, "status": result['status']}
