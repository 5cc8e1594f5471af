"""Tests for the subscription credit ledger."""

from datetime import date, timedelta

import pytest

from swapstation.db.models import CreditStatus, SubscriptionCredit
from swapstation.services.ledger import CreditLedger
from swapstation.utils.exceptions import ConflictError, ValidationError


class TestConsume:
    """Tests for consuming swap credit."""

    def test_consume_one(self, test_session, clock, world):
        """Test that one swap is taken from the active credit."""
        ledger = CreditLedger(test_session, clock)
        credit = ledger.consume_one(world.driver_id)

        assert credit.id == world.credit_id
        assert credit.remaining_swaps == 4
        assert credit.status == CreditStatus.ACTIVE
        assert ledger.remaining(world.driver_id) == 4

    def test_last_swap_expires_credit(self, test_session, clock, world):
        """Test that a credit reaching zero becomes EXPIRED."""
        test_session.get(SubscriptionCredit, world.credit_id).remaining_swaps = 1
        test_session.flush()

        ledger = CreditLedger(test_session, clock)
        credit = ledger.consume_one(world.driver_id)

        assert credit.remaining_swaps == 0
        assert credit.status == CreditStatus.EXPIRED
        assert ledger.get_active(world.driver_id) is None
        assert ledger.remaining(world.driver_id) == 0

    def test_no_subscription(self, test_session, clock, world):
        """Test that a driver without credit cannot consume."""
        ledger = CreditLedger(test_session, clock)
        with pytest.raises(ConflictError):
            ledger.consume_one(world.other_driver_id)

    def test_zero_remaining(self, test_session, clock, world):
        """Test that an ACTIVE credit with nothing left cannot be consumed."""
        test_session.get(SubscriptionCredit, world.credit_id).remaining_swaps = 0
        test_session.flush()

        ledger = CreditLedger(test_session, clock)
        with pytest.raises(ConflictError):
            ledger.consume_one(world.driver_id)

    def test_outside_validity_window(self, test_session, clock, world):
        """Test that a credit past its end date is not active."""
        clock.now = clock.now.replace(year=2025)
        ledger = CreditLedger(test_session, clock)

        assert ledger.get_active(world.driver_id) is None
        with pytest.raises(ConflictError):
            ledger.consume_one(world.driver_id)


class TestGrant:
    """Tests for opening credit after a package purchase."""

    def test_grant_new_driver(self, test_session, clock, world):
        """Test that a driver without credit gets a fresh record."""
        ledger = CreditLedger(test_session, clock)
        credit = ledger.grant(world.other_driver_id, package_id=7, swaps=10, duration_days=30)

        assert credit.status == CreditStatus.ACTIVE
        assert credit.remaining_swaps == 10
        assert credit.start_date == date(2024, 6, 1)
        assert credit.end_date == date(2024, 6, 1) + timedelta(days=30)
        assert ledger.remaining(world.other_driver_id) == 10

    def test_grant_with_swaps_left(self, test_session, clock, world):
        """Test that a driver still holding swaps cannot be granted more."""
        ledger = CreditLedger(test_session, clock)
        with pytest.raises(ConflictError):
            ledger.grant(world.driver_id, package_id=7, swaps=10, duration_days=30)

    def test_grant_replaces_used_up_credit(self, test_session, clock, world):
        """Test that an ACTIVE credit at zero is expired before the new one opens."""
        old = test_session.get(SubscriptionCredit, world.credit_id)
        old.remaining_swaps = 0
        test_session.flush()

        ledger = CreditLedger(test_session, clock)
        credit = ledger.grant(world.driver_id, package_id=8, swaps=3, duration_days=7)

        assert credit.id != world.credit_id
        assert test_session.get(SubscriptionCredit, world.credit_id).status == CreditStatus.EXPIRED
        assert ledger.get_active(world.driver_id).id == credit.id

    def test_grant_replaces_lapsed_credit(self, test_session, clock, world):
        """Test that an ACTIVE credit past its end date is expired even with swaps left."""
        old = test_session.get(SubscriptionCredit, world.credit_id)
        old.end_date = date(2024, 5, 20)
        test_session.flush()

        ledger = CreditLedger(test_session, clock)
        credit = ledger.grant(world.driver_id, package_id=8, swaps=3, duration_days=7)

        lapsed = test_session.get(SubscriptionCredit, world.credit_id)
        assert lapsed.status == CreditStatus.EXPIRED
        assert lapsed.remaining_swaps == 5
        assert credit.status == CreditStatus.ACTIVE
        assert ledger.get_active(world.driver_id).id == credit.id
        assert ledger.remaining(world.driver_id) == 3

    @pytest.mark.parametrize("swaps,days", [(0, 30), (5, 0), (-1, 30)])
    def test_grant_rejects_non_positive(self, test_session, clock, world, swaps, days):
        """Test that empty packages are rejected."""
        ledger = CreditLedger(test_session, clock)
        with pytest.raises(ValidationError):
            ledger.grant(world.other_driver_id, package_id=7, swaps=swaps, duration_days=days)
