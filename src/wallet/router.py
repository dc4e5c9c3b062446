from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from src.auth.dependencies import get_current_user, require_finance_admin
from src.common.params import Pagination, pagination_params
from src.common.responses import envelope
from src.database import get_db
from src.models import User
from src.wallet.schemas import BalanceResponse, WalletType, WalletHistoryPage
from src.wallet.service import WalletService, paisa_to_rupees

router = APIRouter()
admin_router = APIRouter()

@router.get("/balance")
def get_balance(request: Request, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Current wallet balance in rupees"""
    service = WalletService(db)
    wallet = service.get_wallet_by_user(current_user.id)
    balance = service.get_balance(wallet.id) if wallet else 0
    currency = wallet.currency if wallet else "PKR"
    return envelope(request, BalanceResponse(balance=paisa_to_rupees(balance), currency=currency))

@router.get("/history")
def get_history(
    request: Request,
    pagination: Pagination = Depends(pagination_params),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Ledger entries of the current user's wallet, newest first"""
    items, _ = WalletService(db).get_user_history(current_user.id, pagination)
    return envelope(request, items)

# Admin endpoints
@admin_router.get("/wallets/liability")
def get_liability_balance(request: Request, db: Session = Depends(get_db), _admin=Depends(require_finance_admin)):
    """Balance of the GIKI Wallet liability account"""
    return envelope(request, WalletService(db).get_system_balance(WalletType.SYS_LIABILITY))

@admin_router.get("/wallets/revenue")
def get_revenue_balance(request: Request, db: Session = Depends(get_db), _admin=Depends(require_finance_admin)):
    """Balance of the Transport Revenue account"""
    return envelope(request, WalletService(db).get_system_balance(WalletType.SYS_REVENUE))

@admin_router.get("/transport/transactions")
def get_transport_transactions(
    request: Request,
    pagination: Pagination = Depends(pagination_params),
    db: Session = Depends(get_db),
    _admin=Depends(require_finance_admin),
):
    """Paginated ledger history of the Transport Revenue wallet"""
    service = WalletService(db)
    revenue = service.get_system_wallet(WalletType.SYS_REVENUE)
    items, total = service.get_history(revenue.id, pagination)
    return envelope(request, WalletHistoryPage(
        data=items, total_count=total, page=pagination.page, page_size=pagination.page_size
    ))
