"""Read access to customers and their synced purchases."""

from typing import List, Optional, Tuple

from sqlalchemy import func, or_
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from exceptions import ResourceNotFoundError
from models.bonus import BonusGroup
from models.customers import Customer, Purchase


async def require_customer(session: AsyncSession, customer_id: int) -> Customer:
    customer = await session.get(Customer, customer_id)
    if not customer:
        raise ResourceNotFoundError("Customer not found", detail={"customer_id": customer_id})
    return customer


async def list_purchases(session: AsyncSession, customer_id: int) -> List[Purchase]:
    """Customer purchases, newest first."""
    result = await session.exec(
        select(Purchase)
        .where(Purchase.customer_id == customer_id)
        .order_by(Purchase.purchased_at.desc(), Purchase.id.desc())
    )
    return list(result.all())


async def search_customers(
    session: AsyncSession,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    with_groups: bool = False,
) -> Tuple[List[Customer], int]:
    """Paginated customer listing with optional name/email/phone search."""
    stmt = select(Customer)
    count_stmt = select(func.count()).select_from(Customer)
    if with_groups:
        has_group = Customer.id.in_(select(BonusGroup.customer_id))
        stmt = stmt.where(has_group)
        count_stmt = count_stmt.where(has_group)
    if search:
        pattern = f"%{search.strip()}%"
        condition = or_(
            Customer.name.ilike(pattern),
            Customer.email.ilike(pattern),
            Customer.phone.ilike(pattern),
        )
        stmt = stmt.where(condition)
        count_stmt = count_stmt.where(condition)

    total = (await session.exec(count_stmt)).one()
    result = await session.exec(
        stmt.order_by(Customer.name, Customer.id).offset((page - 1) * limit).limit(limit)
    )
    return list(result.all()), int(total)


def customer_to_dict(customer: Customer) -> dict:
    return {
        "id": customer.id,
        "name": customer.name,
        "email": customer.email,
        "phone": customer.phone,
        "contact_id": customer.contact_id,
    }
