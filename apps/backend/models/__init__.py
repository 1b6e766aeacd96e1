"""
Flat model exports.

Models are organized into domain modules:
- customers.py: Customer, Purchase and PurchaseLine (owned by order sync)
- bonus.py: BonusGroup, BonusBundle, BonusGroupPurchase and BonusDraft
- settings.py: BonusSettings singleton
"""

# Customer models
from models.customers import (
    Customer,
    Purchase,
    PurchaseLine,
)

# Bonus ledger models
from models.bonus import (
    BonusGroup,
    BonusBundle,
    BonusGroupPurchase,
    BonusDraft,
    GROUP_STATUS_ACTIVE,
    GROUP_STATUS_REDEEMED,
)

# Settings
from models.settings import (
    BonusSettings,
    SETTINGS_KEY,
)

__all__ = [
    "Customer",
    "Purchase",
    "PurchaseLine",
    "BonusGroup",
    "BonusBundle",
    "BonusGroupPurchase",
    "BonusDraft",
    "GROUP_STATUS_ACTIVE",
    "GROUP_STATUS_REDEEMED",
    "BonusSettings",
    "SETTINGS_KEY",
]
