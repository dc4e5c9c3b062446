from datetime import datetime, timezone

import pytest

from src.common.errors import AppError
from src.models import LedgerEntry
from src.wallet.schemas import WalletType
from src.wallet.service import WalletService, calculate_row_hash, format_rfc3339_nano


class TestTransfer:
    """WalletService.transfer"""

    def test_moves_balance_with_two_entries(self, db, student, fund_wallet):
        fund_wallet(student, 300)
        wallets = WalletService(db)
        user_wallet = wallets.get_wallet_by_user(student.id)
        revenue = wallets.get_system_wallet(WalletType.SYS_REVENUE)

        header = wallets.transfer(user_wallet.id, revenue.id, 12000, "TRANSPORT_BOOKING", "ticket-1", "Ticket")
        db.commit()

        assert wallets.get_balance(user_wallet.id) == 18000
        assert wallets.get_balance(revenue.id) == 12000
        entries = db.query(LedgerEntry).filter(LedgerEntry.transaction_id == header.id).all()
        assert sorted(entry.amount for entry in entries) == [-12000, 12000]

    def test_row_hash_matches_entry(self, db, student, fund_wallet):
        fund_wallet(student, 50)
        wallet = WalletService(db).get_wallet_by_user(student.id)
        entry = db.query(LedgerEntry).filter(LedgerEntry.wallet_id == wallet.id).one()
        expected = calculate_row_hash(
            entry.wallet_id, entry.amount, entry.transaction_id, entry.balance_after, entry.created_at
        )
        assert entry.row_hash == expected
        assert entry.seq == 1

    def test_insufficient_funds(self, db, student, fund_wallet):
        fund_wallet(student, 10)
        wallets = WalletService(db)
        user_wallet = wallets.get_wallet_by_user(student.id)
        revenue = wallets.get_system_wallet(WalletType.SYS_REVENUE)
        with pytest.raises(AppError) as exc:
            wallets.transfer(user_wallet.id, revenue.id, 5000, "TRANSPORT_BOOKING", "ticket-2", "Ticket")
        assert exc.value.code == "INSUFFICIENT_FUNDS"
        assert exc.value.details["balance"] == 10.0

    def test_duplicate_reference(self, db, student, fund_wallet):
        fund_wallet(student, 100)
        wallets = WalletService(db)
        user_wallet = wallets.get_wallet_by_user(student.id)
        revenue = wallets.get_system_wallet(WalletType.SYS_REVENUE)
        wallets.transfer(user_wallet.id, revenue.id, 1000, "TRANSPORT_BOOKING", "ticket-3", "Ticket")
        db.commit()
        with pytest.raises(AppError) as exc:
            wallets.transfer(user_wallet.id, revenue.id, 1000, "TRANSPORT_BOOKING", "ticket-3", "Ticket")
        assert exc.value.code == "DUPLICATE_LEDGER_ENTRY"

    def test_rejects_non_positive_amount(self, db, student):
        wallets = WalletService(db)
        user_wallet = wallets.get_or_create_wallet(student.id)
        revenue = wallets.get_system_wallet(WalletType.SYS_REVENUE)
        with pytest.raises(AppError) as exc:
            wallets.transfer(user_wallet.id, revenue.id, 0, "TRANSPORT_BOOKING", "ticket-4", "Ticket")
        assert exc.value.code == "INVALID_AMOUNT"

    def test_system_wallet_may_go_negative(self, db, student, fund_wallet):
        fund_wallet(student, 25)
        liability = WalletService(db).get_system_wallet(WalletType.SYS_LIABILITY)
        assert WalletService(db).get_balance(liability.id) == -2500


class TestTimestampFormat:
    def test_trims_fraction(self):
        value = datetime(2024, 1, 2, 3, 4, 5, 120000, tzinfo=timezone.utc)
        assert format_rfc3339_nano(value) == "2024-01-02T03:04:05.12Z"
        assert format_rfc3339_nano(value.replace(microsecond=0)) == "2024-01-02T03:04:05Z"


class TestWalletApi:
    """/api/wallet"""

    def test_balance_without_wallet(self, client, student, auth_headers):
        response = client.get("/api/wallet/balance", headers=auth_headers(student))
        assert response.status_code == 200
        assert response.json()["data"] == {"balance": 0.0, "currency": "PKR"}

    def test_balance_in_rupees(self, client, student, fund_wallet, auth_headers):
        fund_wallet(student, 450)
        response = client.get("/api/wallet/balance", headers=auth_headers(student))
        assert response.json()["data"]["balance"] == 450.0

    def test_history_newest_first(self, client, student, fund_wallet, auth_headers):
        fund_wallet(student, 100)
        fund_wallet(student, 200)
        response = client.get("/api/wallet/history", headers=auth_headers(student))
        items = response.json()["data"]
        assert [item["amount"] for item in items] == [200.0, 100.0]
        assert items[0]["balance_after"] == 300.0

    def test_admin_system_balances(self, client, make_user, student, fund_wallet, auth_headers):
        finance = make_user(email="finance@giki.edu.pk", user_type="FINANCE_ADMIN")
        fund_wallet(student, 100)
        response = client.get("/api/admin/wallets/liability", headers=auth_headers(finance))
        assert response.status_code == 200
        assert response.json()["data"]["name"] == "GIKI Wallet"
        assert response.json()["data"]["balance"] == -100.0

    def test_admin_requires_finance_role(self, client, make_user, auth_headers):
        transport = make_user(email="transport@giki.edu.pk", user_type="TRANSPORT_ADMIN")
        response = client.get("/api/admin/wallets/revenue", headers=auth_headers(transport))
        assert response.status_code == 403
