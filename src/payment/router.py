from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import HTMLResponse, RedirectResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from src.auth.dependencies import get_current_user, require_finance_admin
from src.common.errors import AppError, log_app_error
from src.common.params import DateRange, Pagination, date_range_params, pagination_params
from src.common.responses import envelope, get_request_id, json_response
from src.config import settings
from src.database import get_db
from src.models import User
from src.payment import errors
from src.payment.gateway import JazzCashClient, get_gateway
from src.payment.poller import payment_poller
from src.payment.schemas import PaymentMethod, PaymentStatus, TopUpRequest, GatewayTransactionPage
from src.payment.service import PaymentService

router = APIRouter()
admin_router = APIRouter()

CALLBACK_PAGES = {
    PaymentStatus.SUCCESS: "success",
    PaymentStatus.FAILED: "failed",
}

@router.post("/topup")
def top_up(
    payload: TopUpRequest,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: JazzCashClient = Depends(get_gateway),
):
    """Start a wallet top-up. 200 once settled, 202 while the payment is still pending."""
    result = PaymentService(db, gateway).initiate(current_user, payload)

    if (
        settings.BACKGROUND_TASKS_ENABLED
        and result.payment_method == PaymentMethod.MWALLET
        and result.status == PaymentStatus.PENDING
    ):
        payment_poller.start_polling(result.txn_ref_no)

    status_code = status.HTTP_200_OK if result.is_terminal else status.HTTP_202_ACCEPTED
    return json_response(request, result, status_code)

@router.get("/status/{txn_ref_no}")
def get_payment_status(
    txn_ref_no: str,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    gateway: JazzCashClient = Depends(get_gateway),
):
    """Status of one of the current user's top-ups"""
    return envelope(request, PaymentService(db, gateway).get_status(current_user, txn_ref_no))

@router.get("/page/{txn_ref_no}", response_class=HTMLResponse)
def card_payment_page(txn_ref_no: str, db: Session = Depends(get_db), gateway: JazzCashClient = Depends(get_gateway)):
    """Auto-submitting form that sends the browser to the card payment page"""
    return HTMLResponse(PaymentService(db, gateway).card_page(txn_ref_no))

@router.post("/card/callback")
async def card_callback(request: Request, db: Session = Depends(get_db), gateway: JazzCashClient = Depends(get_gateway)):
    """Browser return from the card page; redirects to the frontend result page"""
    form = {key: str(value) for key, value in (await request.form()).items()}
    txn_ref_no = form.get("pp_TxnRefNo", "")
    try:
        result = await run_in_threadpool(PaymentService(db, gateway).card_callback, form)
    except AppError as e:
        if e.code == errors.INVALID_SIGNATURE.code:
            raise
        log_app_error(e, get_request_id(request))
        page = "pending"
    else:
        page = CALLBACK_PAGES.get(result.status, "pending")
    return RedirectResponse(
        f"{settings.FRONTEND_URL}/payment/{page}?txn={txn_ref_no}", status_code=status.HTTP_303_SEE_OTHER
    )

# Admin endpoints
@admin_router.get("/transactions/gateway")
def list_gateway_transactions(
    request: Request,
    status_filter: Optional[str] = Query(None, alias="status"),
    method: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Transaction ref, bill ref, user name or email"),
    date_range: DateRange = Depends(date_range_params),
    pagination: Pagination = Depends(pagination_params),
    db: Session = Depends(get_db),
    gateway: JazzCashClient = Depends(get_gateway),
    _admin=Depends(require_finance_admin),
):
    items, total, total_amount = PaymentService(db, gateway).list_transactions(
        date_range, pagination, status_filter, method, search
    )
    return envelope(request, GatewayTransactionPage(
        data=items,
        total_count=total,
        total_amount=total_amount,
        page=pagination.page,
        page_size=pagination.page_size,
    ))

@admin_router.get("/transactions/gateway/export")
def export_gateway_transactions(
    status_filter: Optional[str] = Query(None, alias="status"),
    method: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    date_range: DateRange = Depends(date_range_params),
    db: Session = Depends(get_db),
    gateway: JazzCashClient = Depends(get_gateway),
    _admin=Depends(require_finance_admin),
):
    """CSV of the filtered gateway transactions"""
    content = PaymentService(db, gateway).export_transactions(date_range, status_filter, method, search)
    filename = f"gateway_transactions_{date_range.start.strftime('%Y%m%d')}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

@admin_router.post("/transactions/gateway/{txn_ref_no}/verify")
def verify_gateway_transaction(
    txn_ref_no: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: JazzCashClient = Depends(get_gateway),
    _admin=Depends(require_finance_admin),
):
    """Re-check a transaction with the gateway and settle it if it has finished"""
    return envelope(request, PaymentService(db, gateway).verify_transaction(txn_ref_no))

@admin_router.get("/transactions/gateway/{txn_ref_no}/audit")
def get_gateway_transaction_audit(
    txn_ref_no: str,
    request: Request,
    db: Session = Depends(get_db),
    gateway: JazzCashClient = Depends(get_gateway),
    _admin=Depends(require_finance_admin),
):
    """Raw gateway callbacks received for a transaction"""
    return envelope(request, PaymentService(db, gateway).get_audit_logs(txn_ref_no))
