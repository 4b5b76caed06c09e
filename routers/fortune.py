"""
FORTUNE.PY - Saju Analysis Router

Endpoints:
    POST /fortune/saju/analyze             - Single analysis (blinded unless admin/point-payer)
    POST /fortune/saju/group               - Group compatibility (point cost)
    POST /fortune/saju/compatibility       - Two-person compatibility (voucher)
    POST /fortune/analyses/{id}/unblind    - Unlock a stored analysis with points
    GET  /fortune/free-status              - Today's free-analysis quota
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

import analysis_service
from analysis_service import AnalysisError, NamedBirth
from core.auth import AllowListAuthorizer, CurrentUser, get_authorizer, get_current_user, require_user, verify_api_key
from core.error_responses import ErrorCode, make_error
from database import StoreError, store_transaction
from entitlement_ledger import can_use_free_analysis
from models.api_models import CompatibilityRequest, FortuneAnalyzeRequest, GroupAnalyzeRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/fortune", tags=["fortune"])


def _run(fn, *args, **kwargs):
    """Call a service function, mapping its failures to error responses."""
    try:
        return fn(*args, **kwargs)
    except AnalysisError as e:
        return JSONResponse(status_code=e.status_code, content=make_error(e.code, e.message, **e.extra))
    except StoreError:
        logger.exception("Store unavailable in %s", fn.__name__)
        return JSONResponse(
            status_code=503,
            content=make_error(ErrorCode.SERVICE_UNAVAILABLE, "Store unavailable"),
        )


@router.post("/saju/analyze")
def analyze_saju(
    request: FortuneAnalyzeRequest,
    auth: bool = Depends(verify_api_key),
    user: Optional[CurrentUser] = Depends(get_current_user),
    authorizer: AllowListAuthorizer = Depends(get_authorizer),
):
    """Compute a saju analysis; free-quota and anonymous results come back blinded."""
    return _run(
        analysis_service.analyze_fortune,
        request.to_birth_input(),
        user,
        authorizer,
        mbti=request.mbti,
        blood_type=request.blood_type,
        tier=request.tier.value,
    )


@router.post("/saju/group")
def analyze_group(
    request: GroupAnalyzeRequest,
    auth: bool = Depends(verify_api_key),
    user: Optional[CurrentUser] = Depends(get_current_user),
    authorizer: AllowListAuthorizer = Depends(get_authorizer),
):
    people = [NamedBirth(m.name, m.to_birth_input()) for m in request.members]
    return _run(analysis_service.analyze_group, people, user, authorizer, relation_type=request.relation_type)


@router.post("/saju/compatibility")
def analyze_compatibility(
    request: CompatibilityRequest,
    auth: bool = Depends(verify_api_key),
    user: Optional[CurrentUser] = Depends(get_current_user),
    authorizer: AllowListAuthorizer = Depends(get_authorizer),
):
    return _run(
        analysis_service.analyze_compatibility,
        NamedBirth(request.person1.name, request.person1.to_birth_input()),
        NamedBirth(request.person2.name, request.person2.to_birth_input()),
        user,
        authorizer,
    )


@router.post("/analyses/{analysis_id}/unblind")
def unblind(
    analysis_id: str,
    auth: bool = Depends(verify_api_key),
    user: CurrentUser = Depends(require_user),
):
    return _run(analysis_service.unblind_analysis, analysis_id, user)


def _free_status(user: CurrentUser, authorizer: AllowListAuthorizer):
    with store_transaction() as store:
        return can_use_free_analysis(store, user, authorizer).to_dict()


@router.get("/free-status")
def free_status(
    auth: bool = Depends(verify_api_key),
    user: CurrentUser = Depends(require_user),
    authorizer: AllowListAuthorizer = Depends(get_authorizer),
):
    return _run(_free_status, user, authorizer)
