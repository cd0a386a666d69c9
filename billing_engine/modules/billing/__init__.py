"""Billing module.

Applies provider billing commands to subscriptions and payments, and serves
subscription status.
"""

from billing_engine.modules.billing.handlers import (
    ALREADY_APPLIED_ERRORS,
    BUSINESS_RULE_ERRORS,
    BillingCommandError,
    CommandValidationError,
    HandlerResult,
    SubscriptionNotFoundError,
)
from billing_engine.modules.billing.router import router
from billing_engine.modules.billing.unit_of_work import (
    SqlAlchemyUnitOfWork,
    read_committed_uow_factory,
    serializable_uow_factory,
)

__all__ = [
    "router",
    # Handlers
    "ALREADY_APPLIED_ERRORS",
    "BUSINESS_RULE_ERRORS",
    "BillingCommandError",
    "CommandValidationError",
    "HandlerResult",
    "SubscriptionNotFoundError",
    # Unit of work
    "SqlAlchemyUnitOfWork",
    "read_committed_uow_factory",
    "serializable_uow_factory",
]
