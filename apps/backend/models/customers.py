"""Customer and purchase models, written by the order-sync collaborator."""

from typing import Optional
from datetime import datetime
from decimal import Decimal
from sqlmodel import Field, SQLModel


class Customer(SQLModel, table=True):
    """A loyalty-program customer."""
    __tablename__ = "customer"

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: Optional[str] = Field(default=None, index=True)
    contact_id: Optional[int] = Field(default=None, index=True)  # upstream retail system id
    phone: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Purchase(SQLModel, table=True):
    """
    A synced POS order. Read-mostly for the bonus engine and never deleted by it.
    The eligible amount is always derived from its lines, never stored here.
    """
    __tablename__ = "purchase"

    id: Optional[int] = Field(default=None, primary_key=True)
    customer_id: int = Field(foreign_key="customer.id", index=True)
    pos_reference: Optional[str] = Field(default=None, index=True)
    purchased_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    amount_total: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PurchaseLine(SQLModel, table=True):
    """Line item of a purchase. Staff can exclude a line from the bonus."""
    __tablename__ = "purchase_line"

    id: Optional[int] = Field(default=None, primary_key=True)
    purchase_id: int = Field(foreign_key="purchase.id", index=True)
    product_name: str
    quantity: int = 1
    price_unit: Decimal = Field(default=Decimal("0"), max_digits=12, decimal_places=2)
    subtotal: Optional[Decimal] = Field(default=None, max_digits=12, decimal_places=2)  # incl. tax
    discount_eligible: bool = Field(default=True)
