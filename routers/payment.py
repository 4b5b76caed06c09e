"""
PAYMENT.PY - Checkout, redirect confirmation and webhooks

Endpoints:
    POST /payment/create         - Create a pending payment for checkout
    GET  /payment/toss/success   - Toss redirect; confirms and returns a redirect target
    POST /payment/webhook        - Gateway status events (Toss or Stripe)
    GET  /payment/packages       - Catalog for a locale/currency
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse

from core.auth import CurrentUser, get_current_user, require_user, verify_api_key
from core.error_responses import ErrorCode, make_error
from core.log_sanitizer import sanitize_headers
from database import StoreError
from env_config import Config, get_env
from payment_reconciliation import PaymentError, create_payment, handle_webhook, reconcile_redirect
from pricing import DEFAULT_LOCALE, currency_for_locale, list_packages
from models.api_models import CreatePaymentRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["payment"])


def _absolute(path: str) -> str:
    base = get_env("APP_BASE_URL", "NEXT_PUBLIC_APP_URL", default=Config.APP_BASE_URL)
    return f"{base.rstrip('/')}{path}"


@router.post("/create")
def create(
    request: CreatePaymentRequest,
    auth: bool = Depends(verify_api_key),
    user: CurrentUser = Depends(require_user),
):
    currency = request.currency or currency_for_locale(request.locale)
    try:
        payment = create_payment(
            user,
            request.type.value,
            request.reference_id,
            currency=currency,
            amount=request.amount,
        )
    except PaymentError as e:
        return JSONResponse(status_code=e.status_code, content=make_error(e.code, e.message))
    except StoreError:
        logger.exception("Store unavailable creating payment")
        return JSONResponse(
            status_code=503,
            content=make_error(ErrorCode.SERVICE_UNAVAILABLE, "Payment store unavailable"),
        )

    return {
        "status": "ok",
        "payment": payment,
        "order_id": payment["id"],
        "client_key": get_env("TOSS_CLIENT_KEY", "NEXT_PUBLIC_TOSS_CLIENT_KEY") if payment["provider"] == "toss" else None,
    }


@router.get("/toss/success")
async def toss_success(
    payment_key: Optional[str] = Query(None, alias="paymentKey"),
    order_id: Optional[str] = Query(None, alias="orderId"),
    amount: Optional[str] = Query(None),
    redirect: bool = Query(True, description="Return a 303 redirect instead of JSON"),
    user: Optional[CurrentUser] = Depends(get_current_user),
):
    """Reconcile the Toss success redirect; duplicate visits are harmless."""
    if not payment_key or not order_id or not amount:
        target = _absolute("/payment/fail?error=missing_params")
        return RedirectResponse(target, status_code=303) if redirect else {"success": False, "redirect_to": target}

    try:
        outcome = await reconcile_redirect(payment_key, order_id, amount, user=user)
    except StoreError:
        logger.exception("Store unavailable during redirect reconciliation")
        target = _absolute("/payment/fail?error=server_error")
        return RedirectResponse(target, status_code=303) if redirect else {"success": False, "redirect_to": target}
    target = _absolute(outcome.redirect_to)

    if redirect:
        return RedirectResponse(target, status_code=303)
    return {
        "success": outcome.success,
        "status": outcome.status,
        "order_id": outcome.payment_id,
        "error": outcome.error_code,
        "redirect_to": target,
    }


@router.post("/webhook")
async def webhook(request: Request, provider: Optional[str] = Query(None)):
    raw_body = await request.body()
    logger.debug("Webhook headers: %s", sanitize_headers(dict(request.headers)))

    try:
        outcome = await handle_webhook(raw_body, request.headers, provider_hint=provider)
    except StoreError:
        logger.exception("Store unavailable during webhook")
        return JSONResponse(status_code=503, content={"received": False})
    return JSONResponse(status_code=outcome.status_code, content=outcome.to_dict())


@router.get("/packages")
def packages(
    locale: Optional[str] = Query(None),
    currency: Optional[str] = Query(None),
):
    return list_packages(currency or currency_for_locale(locale or DEFAULT_LOCALE))
