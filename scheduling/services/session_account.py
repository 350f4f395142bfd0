"""
Session Account - per-client pools of pre-paid sessions.

A client package (session account) is created when a package purchase is
fulfilled and then debited one session per booking. The balance only changes
through single-statement UPDATEs:

    debit:  remaining_sessions = remaining_sessions - 1 WHERE remaining_sessions > 0
    credit: remaining_sessions = remaining_sessions + 1

so two concurrent debits against one remaining session can never both win and
the balance never goes negative.

A package only pays for services of its own category (Package.category).
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import case, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    ClientPackage,
    Invoice,
    Package,
    Service,
    ServiceCategory,
    SessionAccountStatus,
)
from database.types import utcnow
from scheduling.errors import NotFoundError
from scheduling.services import invoice_ledger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NeedsPayment:
    """Signalled outcome of a debit with no usable account. Not an error."""

    client_id: UUID
    category: ServiceCategory | None
    reason: str = "No active package with remaining sessions for this service"


@dataclass
class PackageBalance:
    id: UUID
    package_id: UUID
    name: str
    description: str | None
    category: ServiceCategory
    sessions_used: int
    sessions_remaining: int
    sessions_total: int
    purchased_at: datetime
    expires_at: datetime | None
    status: SessionAccountStatus


@dataclass
class PackageSummary:
    active: list[PackageBalance] = field(default_factory=list)
    inactive: list[PackageBalance] = field(default_factory=list)

    @property
    def all(self) -> list[PackageBalance]:
        return [*self.active, *self.inactive]


def _usable(now: datetime):
    return (
        ClientPackage.remaining_sessions > 0,
        or_(ClientPackage.expires_at.is_(None), ClientPackage.expires_at > now),
    )


async def debit_session(
    session: AsyncSession,
    client_id: UUID,
    service: Service,
    now: datetime | None = None,
) -> ClientPackage | NeedsPayment:
    """
    Consume one session from the client's best matching account.

    Accounts are tried soonest expiry first (never-expiring accounts last),
    then oldest purchase first.

    Returns:
        The debited ClientPackage, or NeedsPayment when no active account of the
        service's category has a session left
    """
    now = now or utcnow()

    if service.category is None:
        return NeedsPayment(client_id=client_id, category=None, reason="Service is not covered by packages")

    candidates = await session.execute(
        select(ClientPackage.id)
        .join(Package, Package.id == ClientPackage.package_id)
        .where(
            ClientPackage.client_id == client_id,
            Package.category == service.category,
            *_usable(now),
        )
        .order_by(
            case((ClientPackage.expires_at.is_(None), 1), else_=0),
            ClientPackage.expires_at,
            ClientPackage.purchased_at,
        )
    )

    for account_id in candidates.scalars().all():
        result = await session.execute(
            update(ClientPackage)
            .where(ClientPackage.id == account_id, *_usable(now))
            .values(remaining_sessions=ClientPackage.remaining_sessions - 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            account = await session.get(ClientPackage, account_id, populate_existing=True)
            logger.info(
                f"Session debited ({account.remaining_sessions} remaining)",
                extra={"client_package_id": account_id, "client_id": client_id},
            )
            return account

        # Lost a race for this account's last session; try the next one
        logger.info(
            "Debit lost to a concurrent booking, trying next account",
            extra={"client_package_id": account_id, "client_id": client_id},
        )

    logger.info(
        f"No usable {service.category.value} package, payment required",
        extra={"client_id": client_id},
    )
    return NeedsPayment(client_id=client_id, category=service.category)


async def credit_session(session: AsyncSession, account_id: UUID) -> ClientPackage:
    """
    Return one session to an account, even if it has since expired.

    Raises:
        NotFoundError: Unknown account
    """
    result = await session.execute(
        update(ClientPackage)
        .where(ClientPackage.id == account_id)
        .values(remaining_sessions=ClientPackage.remaining_sessions + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFoundError("Client package not found", details={"client_package_id": str(account_id)})

    account = await session.get(ClientPackage, account_id, populate_existing=True)
    logger.info(
        f"Session credited ({account.remaining_sessions} remaining)",
        extra={"client_package_id": account_id},
    )
    return account


async def get_package(session: AsyncSession, package_id: UUID) -> Package:
    package = await session.get(Package, package_id)
    if package is None:
        raise NotFoundError("Package not found", details={"package_id": str(package_id)})
    return package


async def fulfil_package_purchase(
    session: AsyncSession,
    client_id: UUID,
    package_id: UUID,
    *,
    external_reference: str | None = None,
    external_payment_id: str | None = None,
    now: datetime | None = None,
) -> tuple[ClientPackage, Invoice, bool]:
    """
    Turn a completed package purchase into a session account.

    Creates the account (remaining = session count, expiry = now + validity
    days) together with a paid invoice and its payment record. A replayed
    callback for the same checkout reference returns the existing account.

    Returns:
        (account, invoice, created)
    """
    now = now or utcnow()

    if external_reference is not None:
        existing = (
            await session.execute(
                select(ClientPackage, Invoice)
                .join(Invoice, Invoice.id == ClientPackage.invoice_id)
                .where(Invoice.external_reference == external_reference)
            )
        ).first()
        if existing is not None:
            account, invoice = existing
            logger.info(
                f"Package purchase {external_reference} already fulfilled",
                extra={"client_package_id": account.id, "client_id": client_id},
            )
            return account, invoice, False

    package = await get_package(session, package_id)

    invoice = await invoice_ledger.create_invoice(
        session,
        client_id,
        package.price,
        description=f"Package: {package.name}",
        now=now,
    )
    invoice, _ = await invoice_ledger.payment_succeeded(
        session,
        invoice.id,
        external_payment_id=external_payment_id,
        external_reference=external_reference,
        now=now,
    )

    account = ClientPackage(
        client_id=client_id,
        package_id=package.id,
        remaining_sessions=package.session_count,
        invoice_id=invoice.id,
        purchased_at=now,
        expires_at=now + timedelta(days=package.validity_days),
    )
    session.add(account)
    await session.flush()

    logger.info(
        f"Package purchase fulfilled: {package.name} ({package.session_count} sessions, "
        f"expires {account.expires_at.date()})",
        extra={"client_package_id": account.id, "client_id": client_id, "invoice_id": invoice.id},
    )
    return account, invoice, True


async def summarize_client_packages(
    session: AsyncSession,
    client_id: UUID,
    now: datetime | None = None,
) -> PackageSummary:
    """Split the client's accounts into active and expired/depleted ones."""
    now = now or utcnow()
    rows = await session.execute(
        select(ClientPackage, Package)
        .join(Package, Package.id == ClientPackage.package_id)
        .where(ClientPackage.client_id == client_id)
        .order_by(ClientPackage.purchased_at)
    )

    summary = PackageSummary()
    for account, package in rows.all():
        status = account.status_at(now)
        balance = PackageBalance(
            id=account.id,
            package_id=package.id,
            name=package.name,
            description=package.description,
            category=package.category,
            sessions_used=package.session_count - account.remaining_sessions,
            sessions_remaining=account.remaining_sessions,
            sessions_total=package.session_count,
            purchased_at=account.purchased_at,
            expires_at=account.expires_at,
            status=status,
        )
        if status == SessionAccountStatus.ACTIVE:
            summary.active.append(balance)
        else:
            summary.inactive.append(balance)

    return summary
