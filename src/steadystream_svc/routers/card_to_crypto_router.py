import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from steadystream_svc.card_to_crypto import (
    CardToCryptoError,
    CoinGateClient,
    build_payment_request,
    get_payment_gateway,
)

router = APIRouter()
payments_router = APIRouter()


class OrderRequest(BaseModel):
    plan_id: str
    user_id: str
    customer_email: str
    receive_currency: str = 'USDT'


class PaymentCreateRequest(BaseModel):
    plan_id: str
    user_id: str
    customer_email: str
    settlement_currency: str = 'USD'
    processor: Optional[str] = None


def _coingate() -> CoinGateClient:
    try:
        return CoinGateClient.from_env()
    except EnvironmentError as e:
        logging.error(e)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))


@router.post("/orders", status_code=200)
async def create_order(order_request: OrderRequest):
    client = _coingate()
    try:
        order = client.create_order(
            order_request.plan_id,
            order_request.receive_currency,
            order_request.user_id,
            order_request.customer_email,
        )
    except ValueError as ve:
        logging.error(ve, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except CardToCryptoError as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    finally:
        client.close()
    return {"success": True, "order": order, "payment_url": order.get('payment_url')}


@router.get("/orders/{order_id}", status_code=200)
async def get_order(order_id: str):
    client = _coingate()
    try:
        return {"success": True, "order": client.get_order(order_id)}
    except CardToCryptoError as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    finally:
        client.close()


@payments_router.post("/create", status_code=200)
async def create_payment(payment_request: PaymentCreateRequest):
    gateway = None
    try:
        gateway = get_payment_gateway(payment_request.processor)
        request = build_payment_request(payment_request.plan_id, payment_request.user_id, payment_request.customer_email)
        payment = gateway.create_payment(request, payment_request.settlement_currency)
    except ValueError as ve:
        logging.error(ve, exc_info=True)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ve))
    except CardToCryptoError as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except Exception as e:
        logging.error(e, exc_info=True)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))
    finally:
        if gateway is not None:
            gateway.close()
    logging.info(f"{gateway.name} payment {payment.id} created for order {payment.order_id}")
    return {"success": True, "payment": payment.to_dict()}
