# storefront/services/wallet_service.py
import json
import logging
import time
from decimal import Decimal
from typing import Dict, List, Optional, Any
from ..config import Config
from ..models.errors import ErrorKind, failure
from ..models.order import PaymentMode
from ..models.wallet import TransactionStatus, TransactionType
from ..services.order_service import OrderService
from ..utils.formatters import format_money, to_money
from ..utils.messages import Messages

class _DebitAborted(Exception):
    """Raised inside the debit transaction so nothing it touched is kept"""

    def __init__(self, result: Dict[str, Any]):
        super().__init__(result.get("message"))
        self.result = result

def _dump(payload: Any) -> str:
    return json.dumps(payload or {}, default=str)

def _transaction_row(row) -> Dict[str, Any]:
    tx = dict(row)
    if isinstance(tx.get("raw_json"), str):
        tx["raw_json"] = json.loads(tx["raw_json"])
    return tx

class WalletService:
    """Stored-value balances and the wallet transaction log"""

    def __init__(self, db):
        self.db = db
        self.order_service = OrderService(db)
        self.logger = logging.getLogger(__name__)

    async def ensure(self, user_id: int, conn=None) -> None:
        """Create the wallet on first use"""
        async with self.db.connection(conn) as conn:
            await conn.execute("""
                INSERT INTO wallets (user_id, balance)
                VALUES ($1, 0)
                ON CONFLICT (user_id) DO NOTHING
            """, user_id)

    async def get_wallet(self, user_id: int) -> Dict[str, Any]:
        """Wallet row, created if missing"""
        await self.ensure(user_id)
        async with self.db.pool.acquire() as conn:
            wallet = await conn.fetchrow("""
                SELECT user_id, balance, updated_at FROM wallets
                WHERE user_id = $1
            """, user_id)
            return dict(wallet) if wallet else {"user_id": user_id, "balance": Decimal(0), "updated_at": None}

    async def get_balance(self, user_id: int) -> Decimal:
        """Current balance, zero for a user without a wallet"""
        async with self.db.pool.acquire() as conn:
            balance = await conn.fetchval("""
                SELECT balance FROM wallets
                WHERE user_id = $1
            """, user_id)
            return balance or Decimal(0)

    async def list_transactions(self, user_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent wallet transactions"""
        async with self.db.pool.acquire() as conn:
            transactions = await conn.fetch("""
                SELECT transaction_id, user_id, type, amount, status, related_order_id,
                       provider_order_id, provider_capture_id, provider_txn_ref,
                       raw_json, created_at, updated_at
                FROM wallet_transactions
                WHERE user_id = $1
                ORDER BY transaction_id DESC
                LIMIT $2
            """, user_id, limit)
            return [_transaction_row(tx) for tx in transactions]

    async def debit_for_order(self, user_id: int, order_id: int, amount: Any) -> Dict[str, Any]:
        """Pay an order from the wallet.

        The balance is read once without a lock to turn away obviously short
        wallets cheaply. Otherwise the wallet row is locked, the balance
        re-checked, the order moved to PAID and the balance reduced in a
        single transaction; any refusal inside that transaction rolls it back.
        """
        amount = to_money(amount)
        if amount is None or amount <= 0:
            return failure(ErrorKind.VALIDATION, Messages.INVALID_TOTAL)

        await self.ensure(user_id)

        balance = await self.get_balance(user_id)
        if balance < amount:
            return self._insufficient(balance)

        transaction_ref = f"WALLET-{int(time.time() * 1000)}-{order_id}"

        try:
            async with self.db.pool.acquire() as conn:
                async with conn.transaction():
                    locked_balance = await conn.fetchval("""
                        SELECT balance FROM wallets
                        WHERE user_id = $1
                        FOR UPDATE
                    """, user_id)
                    locked_balance = locked_balance or Decimal(0)

                    if locked_balance < amount:
                        raise _DebitAborted(self._insufficient(locked_balance))

                    paid = await self.order_service.mark_paid(
                        order_id, user_id, PaymentMode.WALLET, transaction_ref, conn=conn
                    )
                    if not paid["success"]:
                        raise _DebitAborted(paid)
                    if paid["already_paid"]:
                        raise _DebitAborted({
                            "success": False,
                            "already_paid": True,
                            "order_id": order_id,
                            "message": Messages.ORDER_ALREADY_PAID
                        })

                    new_balance = await conn.fetchval("""
                        UPDATE wallets
                        SET balance = balance - $1, updated_at = NOW()
                        WHERE user_id = $2
                        RETURNING balance
                    """, amount, user_id)

                    await conn.execute("""
                        INSERT INTO wallet_transactions (
                            user_id, type, amount, status, related_order_id, provider_txn_ref
                        ) VALUES ($1, $2, $3, $4, $5, $6)
                    """,
                        user_id,
                        TransactionType.PAYMENT.value,
                        amount,
                        TransactionStatus.COMPLETED.value,
                        order_id,
                        transaction_ref
                    )
        except _DebitAborted as aborted:
            self.logger.info(f"Wallet debit for order {order_id} refused: {aborted.result.get('message')}")
            return aborted.result

        self.logger.info(f"Wallet of user {user_id} debited {amount} for order {order_id}")
        return {
            "success": True,
            "order_id": order_id,
            "transaction_ref": transaction_ref,
            "balance": format_money(new_balance)
        }

    async def create_topup(self, user_id: int, amount: Any) -> Dict[str, Any]:
        """Open a CREATED top-up transaction"""
        amount = to_money(amount)
        if amount is None:
            return failure(ErrorKind.VALIDATION, Messages.INVALID_TOPUP)
        if amount < Config.TOPUP_MIN or amount > Config.TOPUP_MAX:
            return failure(ErrorKind.VALIDATION, Messages.topup_range(Config.TOPUP_MIN, Config.TOPUP_MAX))

        await self.ensure(user_id)
        async with self.db.pool.acquire() as conn:
            transaction_id = await conn.fetchval("""
                INSERT INTO wallet_transactions (user_id, type, amount, status)
                VALUES ($1, $2, $3, $4)
                RETURNING transaction_id
            """, user_id, TransactionType.TOPUP.value, amount, TransactionStatus.CREATED.value)

        return {"success": True, "transaction_id": transaction_id, "amount": amount}

    async def get_transaction(self, transaction_id: int) -> Optional[Dict[str, Any]]:
        """Fetch one wallet transaction"""
        async with self.db.pool.acquire() as conn:
            tx = await conn.fetchrow("""
                SELECT * FROM wallet_transactions WHERE transaction_id = $1
            """, transaction_id)
            return _transaction_row(tx) if tx else None

    async def get_owned_topup(self, transaction_id: int, user_id: int) -> Dict[str, Any]:
        """A top-up transaction that belongs to the user"""
        tx = await self.get_transaction(transaction_id)
        if not tx or tx["type"] != TransactionType.TOPUP.value:
            return failure(ErrorKind.NOT_FOUND, Messages.TRANSACTION_NOT_FOUND)
        if tx["user_id"] != user_id:
            return failure(ErrorKind.FORBIDDEN, Messages.TRANSACTION_FORBIDDEN)
        return {"success": True, "transaction": tx}

    async def mark_provider_order_created(self, transaction_id: int, user_id: int,
                                          provider_order_id: str) -> bool:
        """CREATED -> PROVIDER_ORDER_CREATED with the card processor's order id"""
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE wallet_transactions
                SET status = $1, provider_order_id = $2, updated_at = NOW()
                WHERE transaction_id = $3 AND user_id = $4 AND status = ANY($5::text[])
            """,
                TransactionStatus.PROVIDER_ORDER_CREATED.value,
                provider_order_id,
                transaction_id,
                user_id,
                [TransactionStatus.CREATED.value, TransactionStatus.PROVIDER_ORDER_CREATED.value,
                 TransactionStatus.FAILED.value]
            )
            return result == "UPDATE 1"

    async def mark_qr_created(self, transaction_id: int, user_id: int,
                              txn_ref: str, raw_payload: Any) -> bool:
        """CREATED -> PROVIDER_QR_CREATED with the QR retrieval reference"""
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE wallet_transactions
                SET status = $1, provider_txn_ref = $2, raw_json = $3::jsonb, updated_at = NOW()
                WHERE transaction_id = $4 AND user_id = $5 AND status = ANY($6::text[])
            """,
                TransactionStatus.PROVIDER_QR_CREATED.value,
                txn_ref,
                _dump(raw_payload),
                transaction_id,
                user_id,
                [TransactionStatus.CREATED.value, TransactionStatus.FAILED.value]
            )
            return result == "UPDATE 1"

    async def complete_topup(self, transaction_id: int, user_id: int, provider_ref: Optional[str],
                             raw_payload: Any, provider: PaymentMode = PaymentMode.CARD) -> Dict[str, Any]:
        """Credit the wallet for a top-up exactly once"""
        ref_column = "provider_capture_id" if provider == PaymentMode.CARD else "provider_txn_ref"

        async with self.db.pool.acquire() as conn:
            async with conn.transaction():
                tx = await conn.fetchrow("""
                    SELECT transaction_id, user_id, type, amount, status
                    FROM wallet_transactions
                    WHERE transaction_id = $1
                    FOR UPDATE
                """, transaction_id)

                if not tx or tx["type"] != TransactionType.TOPUP.value:
                    return failure(ErrorKind.NOT_FOUND, Messages.TRANSACTION_NOT_FOUND)
                if tx["user_id"] != user_id:
                    return failure(ErrorKind.FORBIDDEN, Messages.TRANSACTION_FORBIDDEN)
                if tx["status"] == TransactionStatus.COMPLETED.value:
                    return {"success": True, "already_completed": True, "transaction_id": transaction_id}

                amount = to_money(tx["amount"])
                if amount is None or amount <= 0:
                    return failure(ErrorKind.VALIDATION, Messages.INVALID_TOPUP)

                await self.ensure(user_id, conn=conn)
                await conn.fetchval("""
                    SELECT balance FROM wallets WHERE user_id = $1 FOR UPDATE
                """, user_id)

                await conn.execute(f"""
                    UPDATE wallet_transactions
                    SET status = $1, {ref_column} = $2, raw_json = $3::jsonb, updated_at = NOW()
                    WHERE transaction_id = $4 AND user_id = $5
                """,
                    TransactionStatus.COMPLETED.value,
                    provider_ref,
                    _dump(raw_payload),
                    transaction_id,
                    user_id
                )

                new_balance = await conn.fetchval("""
                    UPDATE wallets
                    SET balance = balance + $1, updated_at = NOW()
                    WHERE user_id = $2
                    RETURNING balance
                """, amount, user_id)

        self.logger.info(f"Top-up {transaction_id} completed: user {user_id} credited {amount}")
        return {
            "success": True,
            "already_completed": False,
            "transaction_id": transaction_id,
            "balance": format_money(new_balance)
        }

    async def mark_failed(self, transaction_id: int, user_id: int, raw_payload: Any) -> bool:
        """Flag a top-up as FAILED; a COMPLETED one is never downgraded"""
        async with self.db.pool.acquire() as conn:
            result = await conn.execute("""
                UPDATE wallet_transactions
                SET status = $1, raw_json = $2::jsonb, updated_at = NOW()
                WHERE transaction_id = $3 AND user_id = $4 AND status <> $5
            """,
                TransactionStatus.FAILED.value,
                _dump(raw_payload),
                transaction_id,
                user_id,
                TransactionStatus.COMPLETED.value
            )
            return result == "UPDATE 1"

    @staticmethod
    def _insufficient(balance: Decimal) -> Dict[str, Any]:
        return {
            "success": False,
            "error": ErrorKind.INSUFFICIENT_FUNDS.value,
            "insufficient": True,
            "balance": format_money(balance),
            "message": Messages.INSUFFICIENT_BALANCE
        }
