"""Who may run which ledger operation.

Every engine operation checks the actor exactly once against ``REQUIRED_ROLE``.
Ownership rules (self-service, event organizers) are separate predicates
because they depend on the target, not just the role.
"""
from .errors import Forbidden
from .models import Role

RANK = {
    Role.REGULAR: 0,
    Role.CASHIER: 1,
    Role.MANAGER: 2,
    Role.SUPERUSER: 3,
}

REQUIRED_ROLE = {
    "record_purchase": Role.CASHIER,
    "record_adjustment": Role.MANAGER,
    "create_redemption": Role.REGULAR,
    "process_redemption": Role.CASHIER,
    "create_transfer": Role.REGULAR,
    "award_event_points": Role.MANAGER,
    "set_suspicious": Role.MANAGER,
    "list_transactions": Role.MANAGER,
    "view_any_transaction": Role.CASHIER,
    "view_any_balance": Role.MANAGER,
}


def has_role(actor, minimum: Role) -> bool:
    return RANK[Role(actor.role)] >= RANK[minimum]


def can(actor, operation: str) -> bool:
    return has_role(actor, REQUIRED_ROLE[operation])


def require(actor, operation: str):
    if not can(actor, operation):
        raise Forbidden(f"{Role(actor.role).value} may not {operation.replace('_', ' ')}")


def can_award_event(actor, event) -> bool:
    # organizers of this event, or any manager and above
    return event.is_organizer(actor.user_id) or can(actor, "award_event_points")


def can_view_transaction(actor, txn) -> bool:
    return txn.user_id == actor.user_id or can(actor, "view_any_transaction")


def can_view_balance(actor, user_id: int) -> bool:
    return user_id == actor.user_id or can(actor, "view_any_balance")
