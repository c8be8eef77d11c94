import os
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from steadystream_svc.models.base import Base, engine
from steadystream_svc.models import package, payment, profile, subscription  # noqa: F401
from steadystream_svc.routers import (
    card_to_crypto_router,
    email_router,
    megaott_router,
    nowpayments_router,
    playlist_router,
    stripe_router,
    subscription_router,
)

logging.basicConfig(level=os.getenv('LOG_LEVEL', 'INFO').upper())

Base.metadata.create_all(bind=engine)

app = FastAPI(title="SteadyStream TV", debug=os.getenv('DEBUG', 'false').lower() == 'true')

app.add_middleware(
    CORSMiddleware,
    allow_origins=['*'],
    allow_methods=['*'],
    allow_headers=['authorization', 'x-client-info', 'apikey', 'content-type', 'stripe-signature', 'x-nowpayments-sig'],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Every HTTP error carries its message under "error"."""
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.detail})


app.include_router(stripe_router.router, prefix="/api/stripe")
app.include_router(nowpayments_router.router, prefix="/api/nowpayments")
app.include_router(megaott_router.router, prefix="/api/megaott")
app.include_router(subscription_router.router, prefix="/api/subscriptions")
app.include_router(email_router.router, prefix="/api/emails")
app.include_router(card_to_crypto_router.router, prefix="/api/card-to-crypto")
app.include_router(card_to_crypto_router.payments_router, prefix="/api/payments")
app.include_router(playlist_router.router, prefix="/api/playlist")
