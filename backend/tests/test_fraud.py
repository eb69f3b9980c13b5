"""
Unit Tests for fraud risk scoring and fraud checks

Run with: pytest tests/test_fraud.py -v
"""

import dataclasses
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from card_reconciliation.models import (
    FraudAlertType,
    RecommendedAction,
    TransactionLocation,
)
from card_reconciliation.scoring.fraud import (
    calculate_fraud_score,
    check_duplicate,
    check_merchant_category,
    check_offline_transaction,
    check_unusual_amount,
    check_unusual_location,
    check_velocity,
    detect_fraud,
)
from card_reconciliation.scoring_tables import scoring_tables

TUESDAY_AFTERNOON = datetime(2024, 3, 12, 14, 0, tzinfo=timezone.utc)
SATURDAY_AFTERNOON = datetime(2024, 3, 16, 14, 0, tzinfo=timezone.utc)


class TestFraudScore:

    def test_ordinary_transaction_scores_zero(self, make_card, make_transaction):
        transaction = make_transaction(amount=Decimal("500"), transaction_date=TUESDAY_AFTERNOON)
        assert calculate_fraud_score(transaction, make_card()) == 0

    @pytest.mark.parametrize("amount,expected", [
        (Decimal("6000"), 20),
        (Decimal("5000"), 10),
        (Decimal("2000"), 10),
        (Decimal("1000"), 0),
        (Decimal("-6000"), 20),
    ])
    def test_amount_factor(self, make_card, make_transaction, amount, expected):
        transaction = make_transaction(amount=amount, transaction_date=TUESDAY_AFTERNOON)
        assert calculate_fraud_score(transaction, make_card()) == expected

    def test_weekend(self, make_card, make_transaction):
        transaction = make_transaction(amount=Decimal("100"), transaction_date=SATURDAY_AFTERNOON)
        assert calculate_fraud_score(transaction, make_card()) == 15

    @pytest.mark.parametrize("hour,expected", [
        (3, 10),
        (5, 10),
        (6, 0),
        (22, 0),
        # hour > 23 can never happen, so late evening is not unusual
        (23, 0),
    ])
    def test_unusual_hour(self, make_card, make_transaction, hour, expected):
        transaction = make_transaction(
            amount=Decimal("100"),
            transaction_date=TUESDAY_AFTERNOON.replace(hour=hour)
        )
        assert calculate_fraud_score(transaction, make_card()) == expected

    def test_international(self, make_card, make_transaction):
        transaction = make_transaction(
            amount=Decimal("100"),
            transaction_date=TUESDAY_AFTERNOON,
            location=TransactionLocation(country="US")
        )
        assert calculate_fraud_score(transaction, make_card()) == 25

    def test_home_country_is_case_insensitive(self, make_card, make_transaction):
        transaction = make_transaction(
            amount=Decimal("100"),
            transaction_date=TUESDAY_AFTERNOON,
            location=TransactionLocation(country="br")
        )
        assert calculate_fraud_score(transaction, make_card()) == 0

    def test_velocity_flag(self, make_card, make_transaction):
        transaction = make_transaction(
            amount=Decimal("100"),
            transaction_date=TUESDAY_AFTERNOON,
            metadata={"velocity_flag": True}
        )
        assert calculate_fraud_score(transaction, make_card()) == 30

    def test_all_factors_capped(self, make_card, make_transaction):
        transaction = make_transaction(
            amount=Decimal("6000"),
            transaction_date=SATURDAY_AFTERNOON.replace(hour=2),
            location=TransactionLocation(country="US"),
            metadata={"velocity_flag": True}
        )
        assert calculate_fraud_score(transaction, make_card()) == 100

    def test_cap_applies_with_heavier_tables(self, make_card, make_transaction):
        tables = dataclasses.replace(scoring_tables, velocity_flag_points=90)
        transaction = make_transaction(
            amount=Decimal("6000"),
            transaction_date=TUESDAY_AFTERNOON,
            metadata={"velocity_flag": True}
        )
        assert calculate_fraud_score(transaction, make_card(), tables) == 100


class TestFraudChecks:

    def test_amount_near_credit_limit(self, make_card, make_transaction):
        result = check_unusual_amount(make_transaction(amount=Decimal("12000")), make_card())
        assert result.alert_type == FraudAlertType.UNUSUAL_AMOUNT
        assert result.risk_score == 80

    def test_amount_above_high_limit(self, make_card, make_transaction):
        result = check_unusual_amount(make_transaction(amount=Decimal("6000")), make_card())
        assert result.risk_score == 65

    def test_amount_without_credit_limit(self, make_card, make_transaction):
        card = make_card(credit_limit=Decimal("0"))
        result = check_unusual_amount(make_transaction(amount=Decimal("12000")), card)
        assert result.risk_score == 65

    def test_elevated_amount(self, make_card, make_transaction):
        result = check_unusual_amount(make_transaction(amount=Decimal("1500")), make_card())
        assert result.risk_score == 35

    def test_normal_amount(self, make_card, make_transaction):
        assert check_unusual_amount(make_transaction(amount=Decimal("500")), make_card()) is None

    def test_international_location(self, make_card, make_transaction):
        transaction = make_transaction(
            transaction_date=TUESDAY_AFTERNOON,
            location=TransactionLocation(country="US", city="Miami")
        )
        result = check_unusual_location(transaction, make_card())
        assert result.alert_type == FraudAlertType.UNUSUAL_LOCATION
        assert result.risk_score == 60

    def test_international_location_at_night(self, make_card, make_transaction):
        transaction = make_transaction(
            transaction_date=TUESDAY_AFTERNOON.replace(hour=2),
            location=TransactionLocation(country="US")
        )
        assert check_unusual_location(transaction, make_card()).risk_score == 75

    def test_no_location(self, make_card, make_transaction):
        assert check_unusual_location(make_transaction(), make_card()) is None
        domestic = make_transaction(location=TransactionLocation(country="BR"))
        assert check_unusual_location(domestic, make_card()) is None

    def test_velocity_burst(self, make_transaction):
        batch = [
            make_transaction(transaction_date=TUESDAY_AFTERNOON + timedelta(minutes=m))
            for m in (0, 20, 40)
        ]
        result = check_velocity(batch[0], batch)
        assert result.alert_type == FraudAlertType.VELOCITY
        assert result.risk_score == 55

    def test_velocity_risk_grows_with_count(self, make_transaction):
        batch = [
            make_transaction(transaction_date=TUESDAY_AFTERNOON + timedelta(minutes=m))
            for m in (0, 10, 20, 30)
        ]
        assert check_velocity(batch[0], batch).risk_score == 65

    def test_velocity_ignores_other_cards_and_spread(self, make_transaction):
        batch = [
            make_transaction(transaction_date=TUESDAY_AFTERNOON),
            make_transaction(transaction_date=TUESDAY_AFTERNOON + timedelta(minutes=5), card_id="card-2"),
            make_transaction(transaction_date=TUESDAY_AFTERNOON + timedelta(hours=3)),
        ]
        assert check_velocity(batch[0], batch) is None

    def test_upstream_velocity_flag(self, make_transaction):
        transaction = make_transaction(metadata={"velocity_flag": True})
        assert check_velocity(transaction, [transaction]).risk_score == 75

    def test_high_risk_category(self, make_card, make_transaction):
        transaction = make_transaction(merchant_name="Lucky Star", merchant_category="CASINO_ONLINE")
        result = check_merchant_category(transaction, make_card())
        assert result.alert_type == FraudAlertType.MERCHANT_CATEGORY
        assert result.risk_score == 70

    def test_personal_merchant_on_business_card(self, make_card, make_transaction):
        transaction = make_transaction(merchant_name="Grocery Mart", merchant_category="GROCERY")
        assert check_merchant_category(transaction, make_card()).risk_score == 55
        assert check_merchant_category(transaction, make_card(is_business_card=False)) is None

    def test_exact_duplicate(self, make_transaction):
        first = make_transaction()
        second = make_transaction(transaction_date=first.transaction_date + timedelta(hours=1))
        result = check_duplicate(first, [first, second])
        assert result.alert_type == FraudAlertType.DUPLICATE
        assert result.risk_score == 85

    def test_near_duplicate(self, make_transaction):
        first = make_transaction(amount=Decimal("100.00"))
        second = make_transaction(amount=Decimal("102.00"))
        assert check_duplicate(first, [first, second]).risk_score == 60

    def test_not_duplicate(self, make_transaction):
        first = make_transaction(amount=Decimal("100.00"))
        other_amount = make_transaction(amount=Decimal("110.00"))
        other_day = make_transaction(
            amount=Decimal("100.00"),
            transaction_date=first.transaction_date + timedelta(days=1)
        )
        assert check_duplicate(first, [first, other_amount, other_day]) is None

    @pytest.mark.parametrize("metadata", [
        {"offline": True},
        {"fallback_entry": True},
        {"entry_mode": "FALLBACK"},
    ])
    def test_offline_transaction(self, make_transaction, metadata):
        result = check_offline_transaction(make_transaction(metadata=metadata))
        assert result.alert_type == FraudAlertType.OFFLINE_TRANSACTION
        assert result.risk_score == 60

    def test_online_transaction(self, make_transaction):
        assert check_offline_transaction(make_transaction(metadata={"entry_mode": "chip"})) is None


class TestDetectFraud:

    def test_no_alerts_below_threshold(self, make_card, make_transaction):
        transaction = make_transaction(amount=Decimal("1500"), transaction_date=TUESDAY_AFTERNOON)
        assert detect_fraud([transaction], make_card()) == []

    def test_one_alert_per_triggered_check(self, make_card, make_transaction):
        transaction = make_transaction(
            amount=Decimal("12000"),
            transaction_date=TUESDAY_AFTERNOON,
            location=TransactionLocation(country="US")
        )

        alerts = detect_fraud([transaction], make_card())

        assert [a.alert_type for a in alerts] == [
            FraudAlertType.UNUSUAL_AMOUNT,
            FraudAlertType.UNUSUAL_LOCATION,
        ]
        assert alerts[0].recommended_action == RecommendedAction.REVIEW
        assert alerts[1].recommended_action == RecommendedAction.NOTIFY_USER
        assert all(a.transaction_id == transaction.id for a in alerts)
        assert all(a.card_id == transaction.card_id for a in alerts)

    def test_threshold_is_exclusive(self, make_card, make_transaction):
        tables = dataclasses.replace(scoring_tables, alert_threshold=60)
        transaction = make_transaction(
            amount=Decimal("12000"),
            transaction_date=TUESDAY_AFTERNOON,
            location=TransactionLocation(country="US")
        )

        alerts = detect_fraud([transaction], make_card(), tables)

        assert [a.alert_type for a in alerts] == [FraudAlertType.UNUSUAL_AMOUNT]

    def test_velocity_alert_blocks(self, make_card, make_transaction):
        batch = [
            make_transaction(amount=Decimal("80"), transaction_date=TUESDAY_AFTERNOON + timedelta(minutes=m),
                             merchant_name=f"Cafe {m}", merchant_category="FOOD")
            for m in (0, 5, 10)
        ]

        alerts = detect_fraud(batch, make_card())

        assert len(alerts) == 3
        assert {a.alert_type for a in alerts} == {FraudAlertType.VELOCITY}
        assert {a.recommended_action for a in alerts} == {RecommendedAction.BLOCK}
