"""Property-based tests for payment records.

**Feature: billing-engine, Property 13: Payment Records**
"""

import uuid
from decimal import Decimal

import pytest
from hypothesis import given, settings, strategies as st

from billing_engine.modules.payment.models import (
    MAX_PAYMENT_AMOUNT,
    Payment,
    PaymentStatus,
    PaymentValidationError,
)
from tests.builders import T0


class TestPaymentRecord:
    """**Feature: billing-engine, Property 13: Payment Records**"""

    @given(
        cents=st.integers(min_value=0, max_value=10**9),
        currency=st.sampled_from(["usd", "eur", " gbp ", "JPY"]),
        status=st.sampled_from(list(PaymentStatus)),
    )
    @settings(max_examples=100)
    def test_valid_payment_is_normalized(self, cents: int, currency: str, status: PaymentStatus) -> None:
        amount = Decimal(cents) / 100

        payment = Payment.record(
            organization_id="org_1",
            subscription_id=uuid.uuid4(),
            amount=amount,
            currency=currency,
            status=status,
            provider_payment_id="pi_1",
            now=T0,
        )

        assert payment.amount == amount
        assert payment.amount.as_tuple().exponent == -2
        assert payment.currency == currency.strip().upper()
        assert payment.status == status.value
        assert payment.created_at == T0

    @given(amount=st.one_of(
        st.integers(max_value=-1),
        st.sampled_from(["-0.01", "abc", "NaN", "Infinity", ""]),
    ))
    @settings(max_examples=100)
    def test_negative_or_non_numeric_amount_is_rejected(self, amount) -> None:
        with pytest.raises(PaymentValidationError):
            Payment.record("org_1", uuid.uuid4(), amount, "usd", PaymentStatus.SUCCEEDED)

    @pytest.mark.parametrize("currency", ["", "   "])
    def test_currency_is_required(self, currency: str) -> None:
        with pytest.raises(PaymentValidationError):
            Payment.record("org_1", uuid.uuid4(), Decimal("1.00"), currency, PaymentStatus.SUCCEEDED)

    def test_unknown_status_is_rejected(self) -> None:
        with pytest.raises(PaymentValidationError):
            Payment.record("org_1", uuid.uuid4(), Decimal("1.00"), "usd", "REFUNDED")

    @pytest.mark.parametrize("currency", ["usdt", "us", "u$d", "ÜSD"])
    def test_currency_must_be_a_three_letter_code(self, currency: str) -> None:
        with pytest.raises(PaymentValidationError):
            Payment.record("org_1", uuid.uuid4(), Decimal("1.00"), currency, PaymentStatus.SUCCEEDED)

    @given(amount=st.one_of(
        st.integers(min_value=10**10, max_value=10**40),
        st.just(Decimal("9999999999.995")),
    ))
    @settings(max_examples=50)
    def test_amount_beyond_column_precision_is_rejected(self, amount) -> None:
        with pytest.raises(PaymentValidationError):
            Payment.record("org_1", uuid.uuid4(), amount, "usd", PaymentStatus.SUCCEEDED)

    def test_largest_column_amount_is_accepted(self) -> None:
        payment = Payment.record("org_1", uuid.uuid4(), MAX_PAYMENT_AMOUNT, "usd", PaymentStatus.SUCCEEDED)
        assert payment.amount == Decimal("9999999999.99")

    def test_identifiers_longer_than_their_columns_are_rejected(self) -> None:
        with pytest.raises(PaymentValidationError):
            Payment.record("o" * 65, uuid.uuid4(), Decimal("1.00"), "usd", PaymentStatus.SUCCEEDED)
        with pytest.raises(PaymentValidationError):
            Payment.record(
                "org_1", uuid.uuid4(), Decimal("1.00"), "usd", PaymentStatus.SUCCEEDED,
                provider_payment_id="p" * 256,
            )
