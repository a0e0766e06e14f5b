import datetime
import unittest
from decimal import Decimal

from pharmabooks.models import RecurringDefinition
from pharmabooks.recurring import (
    DEFAULT_MONTHLY_DESCRIPTION,
    DEFAULT_WEEKLY_DESCRIPTION,
    Generate,
    Skip,
    effective_day_of_month,
    evaluate,
)

D = datetime.date


def monthly(day_of_month=5, last_generated=None, **kwargs):
    return RecurringDefinition(
        id=1, type='expense', amount=Decimal('2400.00'), frequency='monthly',
        day_of_month=day_of_month, last_generated=last_generated, **kwargs
    )


def weekly(last_generated=None, **kwargs):
    return RecurringDefinition(
        id=2, type='expense', amount=Decimal('950.00'), frequency='weekly',
        day_of_month=None, last_generated=last_generated, **kwargs
    )


class MonthlyPolicyTests(unittest.TestCase):

    def test_generates_on_target_day_of_current_month(self):
        decision = evaluate(monthly(day_of_month=5), D(2024, 3, 10))
        self.assertIsInstance(decision, Generate)
        self.assertEqual(decision.date, D(2024, 3, 5))
        self.assertEqual(decision.period_key, '2024-03')

    def test_skips_when_already_generated_this_month(self):
        decision = evaluate(monthly(day_of_month=5, last_generated=D(2024, 3, 5)), D(2024, 3, 20))
        self.assertIsInstance(decision, Skip)

    def test_same_month_skip_ignores_day(self):
        # last_generated early in the month, target later: still the same period
        decision = evaluate(monthly(day_of_month=25, last_generated=D(2024, 3, 1)), D(2024, 3, 28))
        self.assertIsInstance(decision, Skip)

    def test_skips_before_trigger_day(self):
        decision = evaluate(monthly(day_of_month=20), D(2024, 3, 10))
        self.assertIsInstance(decision, Skip)

    def test_generates_on_the_trigger_day_itself(self):
        decision = evaluate(monthly(day_of_month=10), D(2024, 3, 10))
        self.assertTrue(decision.generate)
        self.assertEqual(decision.date, D(2024, 3, 10))

    def test_same_month_of_previous_year_is_a_different_period(self):
        decision = evaluate(monthly(day_of_month=5, last_generated=D(2023, 3, 5)), D(2024, 3, 10))
        self.assertTrue(decision.generate)

    def test_generated_last_month_fires_again(self):
        decision = evaluate(monthly(day_of_month=1, last_generated=D(2024, 2, 1)), D(2024, 3, 1))
        self.assertEqual(decision.date, D(2024, 3, 1))

    def test_missing_day_of_month_defaults_to_first(self):
        decision = evaluate(monthly(day_of_month=None), D(2024, 3, 1))
        self.assertEqual(decision.date, D(2024, 3, 1))

    def test_datetime_reference_uses_its_date(self):
        decision = evaluate(monthly(day_of_month=5), datetime.datetime(2024, 3, 10, 23, 59))
        self.assertEqual(decision.date, D(2024, 3, 5))

    def test_property_generates_for_every_day_on_or_after_target(self):
        for day in range(1, 32):
            now = D(2024, 1, day)
            for target in range(1, day + 1):
                decision = evaluate(monthly(day_of_month=target, last_generated=D(2023, 12, 31)), now)
                self.assertTrue(decision.generate, (target, now))
                self.assertEqual(decision.date, D(2024, 1, target))

    def test_property_skips_for_every_day_before_target(self):
        for day in range(1, 31):
            for target in range(day + 1, 32):
                decision = evaluate(monthly(day_of_month=target), D(2024, 1, day))
                self.assertFalse(decision.generate, (target, day))


class DayOfMonthClampTests(unittest.TestCase):

    def test_effective_day(self):
        self.assertEqual(effective_day_of_month(31, 2024, 2), 29)
        self.assertEqual(effective_day_of_month(31, 2023, 2), 28)
        self.assertEqual(effective_day_of_month(31, 2024, 4), 30)
        self.assertEqual(effective_day_of_month(15, 2024, 2), 15)

    def test_31st_fires_on_last_day_of_leap_february(self):
        decision = evaluate(monthly(day_of_month=31), D(2024, 2, 29))
        self.assertEqual(decision.date, D(2024, 2, 29))
        self.assertEqual(decision.period_key, '2024-02')

    def test_31st_fires_on_last_day_of_february(self):
        decision = evaluate(monthly(day_of_month=31), D(2023, 2, 28))
        self.assertEqual(decision.date, D(2023, 2, 28))

    def test_31st_fires_on_april_30(self):
        decision = evaluate(monthly(day_of_month=31), D(2024, 4, 30))
        self.assertEqual(decision.date, D(2024, 4, 30))

    def test_clamped_day_not_reached_yet(self):
        decision = evaluate(monthly(day_of_month=30), D(2024, 2, 28))
        self.assertIsInstance(decision, Skip)


class WeeklyPolicyTests(unittest.TestCase):

    def test_generates_after_eight_days(self):
        decision = evaluate(weekly(last_generated=D(2024, 3, 1)), D(2024, 3, 9))
        self.assertIsInstance(decision, Generate)
        self.assertEqual(decision.date, D(2024, 3, 9))
        self.assertEqual(decision.period_key, '2024-03-09')

    def test_skips_within_the_week(self):
        decision = evaluate(weekly(last_generated=D(2024, 3, 5)), D(2024, 3, 9))
        self.assertIsInstance(decision, Skip)

    def test_exactly_seven_days_generates(self):
        decision = evaluate(weekly(last_generated=D(2024, 3, 2)), D(2024, 3, 9))
        self.assertTrue(decision.generate)

    def test_six_days_skips(self):
        decision = evaluate(weekly(last_generated=D(2024, 3, 3)), D(2024, 3, 9))
        self.assertFalse(decision.generate)

    def test_never_generated_fires_today(self):
        decision = evaluate(weekly(), D(2024, 3, 9))
        self.assertEqual(decision.date, D(2024, 3, 9))

    def test_crosses_month_and_year(self):
        decision = evaluate(weekly(last_generated=D(2023, 12, 27)), D(2024, 1, 3))
        self.assertEqual(decision.date, D(2024, 1, 3))


class GuardTests(unittest.TestCase):

    def test_inactive_definition_is_skipped(self):
        self.assertIsInstance(evaluate(monthly(is_active=False), D(2024, 3, 10)), Skip)
        self.assertIsInstance(evaluate(weekly(is_active=False), D(2024, 3, 10)), Skip)

    def test_unknown_frequency_is_skipped(self):
        definition = monthly()
        definition.frequency = 'yearly'
        self.assertIsInstance(evaluate(definition, D(2024, 3, 10)), Skip)


class PayloadTests(unittest.TestCase):

    def test_payload_copies_definition_fields(self):
        definition = monthly(day_of_month=5, category_id=7, description="Shop rent")
        tx = evaluate(definition, D(2024, 3, 10)).transaction
        self.assertEqual(tx.amount, Decimal('2400.00'))
        self.assertEqual(tx.type, 'expense')
        self.assertEqual(tx.category_id, 7)
        self.assertEqual(tx.recurring_id, 1)
        self.assertEqual(tx.description, "Shop rent (automatic)")

    def test_default_descriptions(self):
        self.assertEqual(
            evaluate(monthly(), D(2024, 3, 10)).transaction.description, DEFAULT_MONTHLY_DESCRIPTION,
        )
        self.assertEqual(
            evaluate(weekly(), D(2024, 3, 10)).transaction.description, DEFAULT_WEEKLY_DESCRIPTION,
        )

    def test_uncategorized_definition_yields_uncategorized_transaction(self):
        tx = evaluate(monthly(), D(2024, 3, 10)).transaction
        self.assertIsNone(tx.category_id)


if __name__ == '__main__':
    unittest.main()
