"""Property-based tests for provider event parsing.

**Feature: billing-engine, Property 4: Event Object Normalization**
"""

from decimal import Decimal

import pytest
from hypothesis import given, settings, strategies as st

from billing_engine.modules.webhook.parser import (
    DEFAULT_DURATION_DAYS,
    DEFAULT_PLAN,
    ZERO_DECIMAL_CURRENCIES,
    CommandParseError,
    convert_minor_amount,
    parse_command,
    resolve_job_name,
)
from billing_engine.modules.webhook.schemas import (
    CheckoutCompletedCommand,
    InvoiceFailedCommand,
    JobName,
    PaymentSucceededCommand,
    SubscriptionCanceledCommand,
)
from tests.builders import (
    checkout_completed_event,
    invoice_failed_event,
    payment_succeeded_event,
    subscription_deleted_event,
)

two_decimal_currencies = st.sampled_from(["usd", "eur", "gbp", "idr", "USD"])
zero_decimal_currencies = st.sampled_from(sorted(ZERO_DECIMAL_CURRENCIES))


def _object(event: dict) -> dict:
    return event["data"]["object"]


class TestMinorUnits:
    """**Feature: billing-engine, Property 4: Event Object Normalization**"""

    @given(cents=st.integers(min_value=0, max_value=10**12), currency=two_decimal_currencies)
    @settings(max_examples=100)
    def test_two_decimal_currencies_divide_by_hundred(self, cents: int, currency: str) -> None:
        assert convert_minor_amount(cents, currency) == Decimal(cents) / 100

    @given(amount=st.integers(min_value=0, max_value=10**12), currency=zero_decimal_currencies)
    @settings(max_examples=100)
    def test_zero_decimal_currencies_are_not_divided(self, amount: int, currency: str) -> None:
        assert convert_minor_amount(amount, currency) == Decimal(amount)
        assert convert_minor_amount(amount, currency.upper()) == Decimal(amount)

    def test_missing_amount_is_zero(self) -> None:
        assert convert_minor_amount(None, "usd") == Decimal("0.00")
        assert convert_minor_amount("", "usd") == Decimal("0.00")

    @pytest.mark.parametrize("value", [-1, "abc", True, float("nan"), float("inf"), [100]])
    def test_invalid_amounts_are_rejected(self, value) -> None:
        with pytest.raises(CommandParseError):
            convert_minor_amount(value, "usd")


class TestJobNames:
    def test_handled_event_types_map_to_jobs(self) -> None:
        assert resolve_job_name("payment_intent.succeeded") == JobName.PAYMENT_SUCCEEDED
        assert resolve_job_name("customer.subscription.deleted") == JobName.SUBSCRIPTION_CANCELED
        assert resolve_job_name("invoice.payment_failed") == JobName.INVOICE_FAILED
        assert resolve_job_name("checkout.session.completed") == JobName.CHECKOUT_COMPLETED

    @given(event_type=st.text(max_size=60))
    @settings(max_examples=100)
    def test_unknown_event_types_are_unhandled(self, event_type: str) -> None:
        handled = {
            "payment_intent.succeeded",
            "customer.subscription.deleted",
            "invoice.payment_failed",
            "checkout.session.completed",
        }
        if event_type in handled:
            return
        assert resolve_job_name(event_type) is None


class TestPaymentSucceeded:
    """**Feature: billing-engine, Property 4: Event Object Normalization**"""

    @given(
        amount=st.integers(min_value=0, max_value=10**9),
        plan=st.sampled_from(["PRO", "ENTERPRISE", "pro"]),
        days=st.integers(min_value=1, max_value=3650),
    )
    @settings(max_examples=100)
    def test_fields_are_taken_from_object_and_metadata(self, amount: int, plan: str, days: int) -> None:
        event = payment_succeeded_event(
            "evt_1", "org_1", payment_id="pi_42", amount=amount, plan=plan, duration_days=str(days)
        )
        command = parse_command(JobName.PAYMENT_SUCCEEDED, _object(event))

        assert isinstance(command, PaymentSucceededCommand)
        assert command.organization_id == "org_1"
        assert command.provider_payment_id == "pi_42"
        assert command.customer_id == "cus_1"
        assert command.amount == Decimal(amount) / 100
        assert command.currency == "usd"
        assert command.plan == plan
        assert command.duration_days == float(days)

    def test_plan_and_duration_default(self) -> None:
        event = payment_succeeded_event("evt_1", "org_1", plan=None, duration_days=None)
        command = parse_command(JobName.PAYMENT_SUCCEEDED, _object(event))
        assert command.plan == DEFAULT_PLAN
        assert command.duration_days == DEFAULT_DURATION_DAYS

    def test_duration_days_alias_is_read(self) -> None:
        event = payment_succeeded_event("evt_1", "org_1", duration_days=None)
        _object(event)["metadata"]["durationDays"] = "365"
        command = parse_command(JobName.PAYMENT_SUCCEEDED, _object(event))
        assert command.duration_days == 365.0

    def test_missing_organization_is_left_to_the_handler(self) -> None:
        event = payment_succeeded_event("evt_1", None)
        command = parse_command(JobName.PAYMENT_SUCCEEDED, _object(event))
        assert command.organization_id is None

    @pytest.mark.parametrize("duration", ["thirty", "nan", "inf"])
    def test_unreadable_duration_is_rejected(self, duration: str) -> None:
        event = payment_succeeded_event("evt_1", "org_1", duration_days=duration)
        with pytest.raises(CommandParseError):
            parse_command(JobName.PAYMENT_SUCCEEDED, _object(event))

    def test_missing_payment_id_is_rejected(self) -> None:
        event = payment_succeeded_event("evt_1", "org_1")
        del _object(event)["id"]
        with pytest.raises(CommandParseError):
            parse_command(JobName.PAYMENT_SUCCEEDED, _object(event))


class TestOtherCommands:
    def test_subscription_deleted(self) -> None:
        event = subscription_deleted_event("evt_1", "org_1", provider_subscription_id="sub_9")
        command = parse_command(JobName.SUBSCRIPTION_CANCELED, _object(event))
        assert isinstance(command, SubscriptionCanceledCommand)
        assert command.organization_id == "org_1"
        assert command.provider_subscription_id == "sub_9"

    @given(attempt=st.integers(min_value=1, max_value=50))
    @settings(max_examples=50)
    def test_invoice_attempt_count_is_read(self, attempt: int) -> None:
        event = invoice_failed_event("evt_1", "org_1", attempt_count=attempt, amount_due=1999)
        command = parse_command(JobName.INVOICE_FAILED, _object(event))
        assert isinstance(command, InvoiceFailedCommand)
        assert command.attempt_count == attempt
        assert command.amount_due == Decimal("19.99")

    def test_metadata_attempt_count_wins(self) -> None:
        event = invoice_failed_event("evt_1", "org_1", attempt_count=1)
        _object(event)["metadata"]["attemptCount"] = "4"
        command = parse_command(JobName.INVOICE_FAILED, _object(event))
        assert command.attempt_count == 4

    def test_missing_attempt_count_defaults_to_one(self) -> None:
        event = invoice_failed_event("evt_1", "org_1")
        del _object(event)["attempt_count"]
        command = parse_command(JobName.INVOICE_FAILED, _object(event))
        assert command.attempt_count == 1

    def test_negative_attempt_count_is_rejected(self) -> None:
        event = invoice_failed_event("evt_1", "org_1", attempt_count=-2)
        with pytest.raises(CommandParseError):
            parse_command(JobName.INVOICE_FAILED, _object(event))

    def test_checkout_completed(self) -> None:
        event = checkout_completed_event(
            "evt_1", "org_1", session_id="cs_7", plan="ENTERPRISE", duration_days=365
        )
        command = parse_command(JobName.CHECKOUT_COMPLETED, _object(event))
        assert isinstance(command, CheckoutCompletedCommand)
        assert command.session_id == "cs_7"
        assert command.user_id == "user_1"
        assert command.plan == "ENTERPRISE"
        assert command.duration_days == 365.0


class TestColumnBounds:
    """**Feature: billing-engine, Property 4: Event Object Normalization**"""

    @pytest.mark.parametrize("currency", ["usdt", "us", "u$d", "12a"])
    def test_currency_must_be_three_letters(self, currency: str) -> None:
        for job_name, event in (
            (JobName.PAYMENT_SUCCEEDED, payment_succeeded_event("evt_1", "org_1", currency=currency)),
            (JobName.INVOICE_FAILED, invoice_failed_event("evt_1", "org_1", currency=currency)),
        ):
            with pytest.raises(CommandParseError):
                parse_command(job_name, _object(event))

    @given(length=st.integers(min_value=65, max_value=200))
    @settings(max_examples=25)
    def test_organization_id_longer_than_column_is_rejected(self, length: int) -> None:
        organization_id = "o" * length
        for job_name, event in (
            (JobName.PAYMENT_SUCCEEDED, payment_succeeded_event("evt_1", organization_id)),
            (JobName.SUBSCRIPTION_CANCELED, subscription_deleted_event("evt_1", organization_id)),
            (JobName.INVOICE_FAILED, invoice_failed_event("evt_1", organization_id)),
            (JobName.CHECKOUT_COMPLETED, checkout_completed_event("evt_1", organization_id)),
        ):
            with pytest.raises(CommandParseError):
                parse_command(job_name, _object(event))

    def test_organization_id_at_column_width_is_accepted(self) -> None:
        event = payment_succeeded_event("evt_1", "o" * 64)
        command = parse_command(JobName.PAYMENT_SUCCEEDED, _object(event))
        assert command.organization_id == "o" * 64

    @given(cents=st.integers(min_value=10**12, max_value=10**40))
    @settings(max_examples=50)
    def test_amount_beyond_twelve_digits_is_rejected(self, cents: int) -> None:
        payment = payment_succeeded_event("evt_1", "org_1", amount=cents)
        invoice = invoice_failed_event("evt_1", "org_1", amount_due=cents)
        with pytest.raises(CommandParseError):
            parse_command(JobName.PAYMENT_SUCCEEDED, _object(payment))
        with pytest.raises(CommandParseError):
            parse_command(JobName.INVOICE_FAILED, _object(invoice))

    def test_largest_column_amount_is_accepted(self) -> None:
        event = payment_succeeded_event("evt_1", "org_1", amount=10**12 - 1)
        command = parse_command(JobName.PAYMENT_SUCCEEDED, _object(event))
        assert command.amount == Decimal("9999999999.99")

    def test_invoice_payment_id_fits_its_column(self) -> None:
        event = invoice_failed_event("evt_1", "org_1", invoice_id="in_" + "x" * 250)
        with pytest.raises(CommandParseError):
            parse_command(JobName.INVOICE_FAILED, _object(event))
