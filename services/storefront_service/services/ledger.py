"""Ledger engine: GCoin balance mutation and the immutable entry log.

Every balance change is a single conditional UPDATE on the account row plus one
appended ``LedgerEntry``, committed together. The debit precondition
(``balance >= amount``) lives in the UPDATE's WHERE clause, so two concurrent
debits can never both pass it against a stale read.
"""

import secrets
import uuid
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.storefront_service.errors import (
    AccountNotFoundError,
    AccountSuspendedError,
    IdempotencyKeyConflictError,
    InsufficientFundsError,
    InvalidAmountError,
)
from services.storefront_service.models import (
    Account,
    AccountStatus,
    LedgerEntry,
    LedgerEntryKind,
    ReferenceType,
)
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

REFERRAL_CODE_BYTES = 4
REFERRAL_CODE_ATTEMPTS = 5


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


def _new_referral_code() -> str:
    return secrets.token_hex(REFERRAL_CODE_BYTES).upper()


async def find_account_by_external_id(
    db: AsyncSession, external_id: str
) -> Optional[Account]:
    result = await db.execute(select(Account).where(Account.external_id == external_id))
    return result.scalar_one_or_none()


async def find_account_by_referral_code(
    db: AsyncSession, referral_code: str
) -> Optional[Account]:
    result = await db.execute(
        select(Account).where(Account.referral_code == referral_code.strip().upper())
    )
    return result.scalar_one_or_none()


async def get_account(db: AsyncSession, account_id: uuid.UUID) -> Account:
    """Load an account with fresh column values. Raises if missing."""
    account = await db.get(Account, account_id, populate_existing=True)
    if account is None:
        raise AccountNotFoundError(account_id)
    return account


async def get_active_account(db: AsyncSession, account_id: uuid.UUID) -> Account:
    """Like ``get_account`` but also rejects suspended accounts."""
    account = await get_account(db, account_id)
    if account.status == AccountStatus.SUSPENDED:
        raise AccountSuspendedError(account_id)
    return account


async def set_account_status(
    db: AsyncSession,
    *,
    account_id: uuid.UUID,
    status: AccountStatus,
    admin_name: str,
    reason: Optional[str] = None,
) -> Account:
    """Suspend or reactivate an account. Balance and history are untouched."""
    account = await get_account(db, account_id)
    if account.status != status:
        account.status = status
        account.updated_at = utc_now()
        await db.commit()
        logger.warning(
            "Account %s set to %s by %s (%s)",
            account_id,
            status.value,
            admin_name,
            reason or "no reason given",
        )
    return account


async def register_account(
    db: AsyncSession,
    *,
    external_id: str,
    username: Optional[str] = None,
) -> tuple[Account, bool]:
    """Create the account for a chat identity.

    Idempotent: returns ``(existing, False)`` when the identity is already
    registered, ``(account, True)`` otherwise.
    """
    existing = await find_account_by_external_id(db, external_id)
    if existing:
        return existing, False

    for _ in range(REFERRAL_CODE_ATTEMPTS):
        account = Account(
            external_id=external_id,
            username=username,
            balance=0,
            referral_code=_new_referral_code(),
        )
        db.add(account)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            # Either a concurrent registration won or the code collided.
            existing = await find_account_by_external_id(db, external_id)
            if existing:
                return existing, False
            continue

        logger.info("Registered account %s for external id %s", account.id, external_id)
        return account, True

    raise RuntimeError(
        f"Could not allocate a unique referral code for external id {external_id}"
    )


# ---------------------------------------------------------------------------
# Balance mutation
# ---------------------------------------------------------------------------


async def find_entry_by_idempotency_key(
    db: AsyncSession, idempotency_key: str
) -> Optional[LedgerEntry]:
    result = await db.execute(
        select(LedgerEntry).where(LedgerEntry.idempotency_key == idempotency_key)
    )
    return result.scalar_one_or_none()


def _check_replay(entry: LedgerEntry, account_id: uuid.UUID, amount: int) -> None:
    if entry.account_id != account_id or entry.amount != amount:
        logger.error(
            "Idempotency key %s reused: stored %+d on %s, requested %+d on %s",
            entry.idempotency_key,
            entry.amount,
            entry.account_id,
            amount,
            account_id,
        )
        raise IdempotencyKeyConflictError(
            entry.idempotency_key, f"{entry.amount:+d} on account {entry.account_id}"
        )


async def _apply(
    db: AsyncSession,
    *,
    account_id: uuid.UUID,
    amount: int,
    kind: LedgerEntryKind,
    description: str,
    reference_type: Optional[ReferenceType],
    reference_id: Optional[str],
    idempotency_key: Optional[str],
    commit: bool,
) -> Account:
    """Apply a signed ``amount`` to the account and append its ledger entry.

    With ``commit=False`` the caller owns the transaction and the changes are
    only flushed.
    """
    if idempotency_key:
        existing = await find_entry_by_idempotency_key(db, idempotency_key)
        if existing:
            _check_replay(existing, account_id, amount)
            logger.info(
                "Idempotent replay for key=%s -> entry=%s", idempotency_key, existing.id
            )
            return await get_account(db, existing.account_id)

    stmt = update(Account).where(Account.id == account_id)
    if amount < 0:
        stmt = stmt.where(Account.balance >= -amount)
    result = await db.execute(
        stmt.values(balance=Account.balance + amount, updated_at=utc_now()).execution_options(
            synchronize_session=False
        )
    )

    if result.rowcount == 0:
        if commit:
            # Nothing matched; end the transaction without expiring loaded objects.
            await db.commit()
        available = await db.scalar(
            select(Account.balance).where(Account.id == account_id)
        )
        if available is None:
            raise AccountNotFoundError(account_id)
        raise InsufficientFundsError(account_id, -amount, available)

    balance_after = await db.scalar(
        select(Account.balance).where(Account.id == account_id)
    )
    entry = LedgerEntry(
        account_id=account_id,
        amount=amount,
        kind=kind,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        balance_after=balance_after,
        idempotency_key=idempotency_key,
    )
    db.add(entry)

    if not commit:
        await db.flush()
        return await get_account(db, account_id)

    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if idempotency_key:
            existing = await find_entry_by_idempotency_key(db, idempotency_key)
            if existing:
                _check_replay(existing, account_id, amount)
                logger.info(
                    "Concurrent replay for key=%s resolved to entry=%s",
                    idempotency_key,
                    existing.id,
                )
                return await get_account(db, existing.account_id)
        raise

    logger.info(
        "Ledger %s %+d on account %s (key=%s), balance now %d",
        kind.value,
        amount,
        account_id,
        idempotency_key,
        balance_after,
    )
    return await get_account(db, account_id)


async def credit(
    db: AsyncSession,
    *,
    account_id: uuid.UUID,
    amount: int,
    kind: LedgerEntryKind,
    description: str,
    reference_type: Optional[ReferenceType] = None,
    reference_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    commit: bool = True,
) -> Account:
    """Add ``amount`` GCoins to the account. Returns the updated account."""
    if not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    return await _apply(
        db,
        account_id=account_id,
        amount=amount,
        kind=kind,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        idempotency_key=idempotency_key,
        commit=commit,
    )


async def debit(
    db: AsyncSession,
    *,
    account_id: uuid.UUID,
    amount: int,
    kind: LedgerEntryKind,
    description: str,
    reference_type: Optional[ReferenceType] = None,
    reference_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    commit: bool = True,
) -> Account:
    """Remove ``amount`` GCoins from the account.

    Raises ``InsufficientFundsError`` without appending anything when the
    balance at write time cannot cover the debit.
    """
    if not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    return await _apply(
        db,
        account_id=account_id,
        amount=-amount,
        kind=kind,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        idempotency_key=idempotency_key,
        commit=commit,
    )


async def adjust_balance(
    db: AsyncSession,
    *,
    account_id: uuid.UUID,
    amount: int,
    reason: str,
    admin_name: str,
) -> Account:
    """Admin correction. Positive amounts credit, negative amounts debit."""
    if not isinstance(amount, int) or amount == 0:
        raise InvalidAmountError(amount)
    description = f"Admin adjustment by {admin_name}: {reason}"
    if amount > 0:
        return await credit(
            db,
            account_id=account_id,
            amount=amount,
            kind=LedgerEntryKind.ADMIN_ADJUSTMENT,
            description=description,
        )
    return await debit(
        db,
        account_id=account_id,
        amount=-amount,
        kind=LedgerEntryKind.ADMIN_ADJUSTMENT,
        description=description,
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_balance(db: AsyncSession, account_id: uuid.UUID) -> int:
    balance = await db.scalar(select(Account.balance).where(Account.id == account_id))
    if balance is None:
        raise AccountNotFoundError(account_id)
    return balance


async def ledger_sum(db: AsyncSession, account_id: uuid.UUID) -> int:
    """Sum of every entry for the account; must equal the cached balance."""
    total = await db.scalar(
        select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(
            LedgerEntry.account_id == account_id
        )
    )
    return int(total)


async def history(
    db: AsyncSession,
    account_id: uuid.UUID,
    *,
    page: int = 1,
    page_size: int = 20,
) -> tuple[list[LedgerEntry], int]:
    """Entries for the account, newest first, with the total entry count."""
    page = max(page, 1)
    total = await db.scalar(
        select(func.count(LedgerEntry.id)).where(LedgerEntry.account_id == account_id)
    )
    result = await db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.account_id == account_id)
        .order_by(LedgerEntry.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total or 0
