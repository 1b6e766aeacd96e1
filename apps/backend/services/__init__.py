# Services package
from .eligibility import eligible_amount, bonus_for, load_eligible_amounts, set_line_eligibility
from .groups import create_group, update_group, delete_group, group_bundles
from .ledger import redeem_group
from .queue import queue_status, process_queue, auto_promote, sweep_auto_bonus
from .draft_autosave import DraftAutosaver

__all__ = [
    "eligible_amount",
    "bonus_for",
    "load_eligible_amounts",
    "set_line_eligibility",
    "create_group",
    "update_group",
    "delete_group",
    "group_bundles",
    "redeem_group",
    "queue_status",
    "process_queue",
    "auto_promote",
    "sweep_auto_bonus",
    "DraftAutosaver",
]
