"""
POINTS.PY - Point balance and ledger router

Endpoints:
    GET  /points/balance        - Current balance plus today's free quota
    GET  /points/history        - Ledger rows, newest first
    POST /points/signup-bonus   - Create the profile and grant the one-time bonus
"""

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from core.auth import AllowListAuthorizer, CurrentUser, get_authorizer, require_user, verify_api_key
from core.error_responses import ErrorCode, make_error
from database import StoreError, store_transaction
from entitlement_ledger import can_use_free_analysis, ensure_profile, get_point_balance, get_point_history

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/points", tags=["points"])


def _unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content=make_error(ErrorCode.SERVICE_UNAVAILABLE, "Point ledger unavailable"),
    )


@router.get("/balance")
def balance(
    auth: bool = Depends(verify_api_key),
    user: CurrentUser = Depends(require_user),
    authorizer: AllowListAuthorizer = Depends(get_authorizer),
):
    try:
        with store_transaction() as store:
            points = get_point_balance(store, user.id)
            free = can_use_free_analysis(store, user, authorizer)
    except StoreError:
        return _unavailable()
    return {"user_id": user.id, "points": points, "free_analysis": free.to_dict()}


@router.get("/history")
def history(
    limit: int = Query(50, ge=1, le=200),
    auth: bool = Depends(verify_api_key),
    user: CurrentUser = Depends(require_user),
):
    try:
        with store_transaction() as store:
            rows = [tx.to_dict() for tx in get_point_history(store, user.id, limit=limit)]
    except StoreError:
        return _unavailable()
    return {"user_id": user.id, "transactions": rows}


@router.post("/signup-bonus")
def signup_bonus(
    auth: bool = Depends(verify_api_key),
    user: CurrentUser = Depends(require_user),
):
    """Idempotent: the bonus is credited at most once per user."""
    try:
        with store_transaction() as store:
            profile = ensure_profile(store, user.id, user.email)
            body = profile.to_dict()
    except StoreError:
        return _unavailable()
    return {"status": "ok", "profile": body}
