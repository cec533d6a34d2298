"""Referral reward trigger: signup and first-purchase bonuses for referrers."""

import uuid
from dataclasses import dataclass
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.storefront_service.models import (
    Account,
    LedgerEntryKind,
    ReferenceType,
    Referral,
    ReferralStatus,
)
from services.storefront_service.services import ledger, messages
from services.storefront_service.services.notifier import MessagingSink, send_quietly
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def _add_earnings(db: AsyncSession, account_id: uuid.UUID, amount: int) -> None:
    await db.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(referral_earnings=Account.referral_earnings + amount)
        .execution_options(synchronize_session=False)
    )


async def _tell_referrer(
    notifier: Optional[MessagingSink], referrer: Account, bonus: int, reason: str
) -> None:
    if notifier is not None:
        await send_quietly(
            notifier, referrer.external_id, messages.referral_bonus_message(bonus, reason)
        )


async def on_signup(
    db: AsyncSession,
    *,
    referral_code: str,
    account_id: uuid.UUID,
    is_new_account: bool,
    notifier: Optional[MessagingSink] = None,
) -> bool:
    """Record the referral and pay the signup bonus to the referrer.

    Returns ``False`` without side effects when the code is unknown, the account
    refers itself, the account existed before this signup, or it is already
    referred.
    """
    if not is_new_account or not referral_code:
        return False

    referrer = await ledger.find_account_by_referral_code(db, referral_code)
    if referrer is None:
        logger.info("Unknown referral code %r for account %s", referral_code, account_id)
        return False
    if referrer.id == account_id:
        return False

    existing = await db.scalar(
        select(Referral.id).where(Referral.referred_id == account_id)
    )
    if existing is not None:
        return False

    bonus = get_settings().REFERRAL_SIGNUP_BONUS
    referral = Referral(
        referrer_id=referrer.id,
        referred_id=account_id,
        coins_earned=bonus,
        status=ReferralStatus.PENDING,
        is_first_purchase=False,
    )
    db.add(referral)
    try:
        await db.flush()
        await db.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(referrer_id=referrer.id)
            .execution_options(synchronize_session=False)
        )
        await ledger.credit(
            db,
            account_id=referrer.id,
            amount=bonus,
            kind=LedgerEntryKind.REFERRAL_BONUS,
            description=f"Referral bonus for new signup: {referrer.referral_code}",
            reference_type=ReferenceType.REFERRAL,
            reference_id=str(referral.id),
            idempotency_key=f"referral-signup-{account_id}",
            commit=False,
        )
        await _add_earnings(db, referrer.id, bonus)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        logger.info("Account %s was referred concurrently; signup bonus skipped", account_id)
        return False

    logger.info(
        "Referral %s: %s referred %s, signup bonus %d",
        referral.id,
        referrer.id,
        account_id,
        bonus,
    )
    await _tell_referrer(notifier, referrer, bonus, "a friend joined with your code")
    return True


async def on_first_purchase_completed(
    db: AsyncSession,
    *,
    account_id: uuid.UUID,
    notifier: Optional[MessagingSink] = None,
) -> bool:
    """Pay the first-purchase bonus at most once per referral.

    The pending/unflagged guard is flipped by one conditional UPDATE in the same
    transaction as the referrer credit, so repeated or concurrent calls pay once.
    """
    bonus = get_settings().REFERRAL_FIRST_PURCHASE_BONUS
    now = utc_now()
    result = await db.execute(
        update(Referral)
        .where(
            Referral.referred_id == account_id,
            Referral.status == ReferralStatus.PENDING,
            Referral.is_first_purchase.is_(False),
        )
        .values(
            status=ReferralStatus.COMPLETED,
            is_first_purchase=True,
            coins_earned=Referral.coins_earned + bonus,
            completed_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        # No referral to pay; end the no-op transaction without expiring objects.
        await db.commit()
        return False

    row = (
        await db.execute(
            select(Referral.id, Referral.referrer_id).where(
                Referral.referred_id == account_id
            )
        )
    ).one()
    referral_id, referrer_id = row

    referrer = await ledger.credit(
        db,
        account_id=referrer_id,
        amount=bonus,
        kind=LedgerEntryKind.REFERRAL_BONUS,
        description="Referral bonus for first purchase by referred user",
        reference_type=ReferenceType.REFERRAL,
        reference_id=str(referral_id),
        idempotency_key=f"referral-purchase-{referral_id}",
        commit=False,
    )
    await _add_earnings(db, referrer_id, bonus)
    await db.commit()

    logger.info(
        "Referral %s completed: first-purchase bonus %d paid to %s",
        referral_id,
        bonus,
        referrer_id,
    )
    await _tell_referrer(notifier, referrer, bonus, "your referral made a first purchase")
    return True


@dataclass
class ReferralStats:
    total: int
    completed: int
    pending: int
    coins_earned: int
    referral_code: str


async def referral_stats(db: AsyncSession, account_id: uuid.UUID) -> ReferralStats:
    account = await ledger.get_account(db, account_id)
    result = await db.execute(
        select(Referral.status, func.count(Referral.id))
        .where(Referral.referrer_id == account_id)
        .group_by(Referral.status)
    )
    counts = {status: count for status, count in result.all()}
    return ReferralStats(
        total=sum(counts.values()),
        completed=counts.get(ReferralStatus.COMPLETED, 0),
        pending=counts.get(ReferralStatus.PENDING, 0),
        coins_earned=account.referral_earnings,
        referral_code=account.referral_code,
    )
