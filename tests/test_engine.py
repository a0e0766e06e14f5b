import datetime
import shutil
import sqlite3
import tempfile
import unittest
from decimal import Decimal
from pathlib import Path
from unittest import mock

from faker import Faker

from pharmabooks.demo_data import generate_demo_data
from pharmabooks.engine import DEFAULT_CATEGORIES, BooksEngine
from pharmabooks.migration_runner import run_all_pending
from pharmabooks.recurring import RecurringCheck
from pharmabooks.setup_sqlite import create_database, verify_schema

D = datetime.date


class EngineTestCase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.db_path = Path(self.tmpdir) / "books.db"
        self.assertTrue(create_database(self.db_path))
        run_all_pending(self.db_path)
        self.engine = BooksEngine(self.db_path)
        ok, _, self.user_id = self.engine.register_user("eczane", "password123")
        self.assertTrue(ok)

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def category_id(self, name, type_):
        for category in self.engine.get_categories(self.user_id, type_=type_):
            if category.name == name:
                return category.id
        raise AssertionError(f"no category {name}")


class SchemaTests(EngineTestCase):

    def test_schema_verifies(self):
        self.assertTrue(verify_schema(self.db_path))

    def test_create_database_is_idempotent(self):
        self.assertTrue(create_database(self.db_path))


class AuthTests(EngineTestCase):

    def test_login(self):
        user, message = self.engine.login_user("eczane", "password123")
        self.assertEqual(user['user_id'], self.user_id)
        self.assertNotIn('password_hash', user)

    def test_bad_password(self):
        user, message = self.engine.login_user("eczane", "wrong-password")
        self.assertIsNone(user)
        self.assertEqual(message, "Invalid username or password.")

    def test_duplicate_username(self):
        ok, message, new_id = self.engine.register_user("eczane", "another-password")
        self.assertFalse(ok)
        self.assertIn("exists", message)
        self.assertIsNone(new_id)

    def test_change_password(self):
        ok, _ = self.engine.change_password(self.user_id, "password123", "newpassword1")
        self.assertTrue(ok)
        self.assertIsNotNone(self.engine.login_user("eczane", "newpassword1")[0])

    def test_change_password_rejects_wrong_current_and_short_new(self):
        self.assertFalse(self.engine.change_password(self.user_id, "nope", "newpassword1")[0])
        ok, message = self.engine.change_password(self.user_id, "password123", "short")
        self.assertFalse(ok)
        self.assertIn("at least 8", message)

    def test_delete_user_cascades(self):
        self.engine.add_transaction(self.user_id, D(2024, 3, 1), "10", "income")
        ok, _ = self.engine.delete_user(self.user_id)
        self.assertTrue(ok)
        self.assertIsNone(self.engine.get_user(self.user_id))
        self.assertEqual(self.engine.get_categories(self.user_id), [])


class CategoryTests(EngineTestCase):

    def test_defaults_ordered_by_type_then_name(self):
        categories = self.engine.get_categories(self.user_id)
        self.assertEqual(len(categories), len(DEFAULT_CATEGORIES))
        keys = [(c.type, c.name) for c in categories]
        self.assertEqual(keys, sorted(keys))

    def test_add_and_duplicate(self):
        ok, _, category = self.engine.add_category(self.user_id, "  Consulting  ", "income")
        self.assertTrue(ok)
        self.assertEqual(category.name, "Consulting")
        ok, message, _ = self.engine.add_category(self.user_id, "Consulting", "income")
        self.assertFalse(ok)
        self.assertIn("already exists", message)

    def test_same_name_allowed_for_other_type(self):
        ok, _, _ = self.engine.add_category(self.user_id, "Rent", "income")
        self.assertTrue(ok)

    def test_rejects_blank_name_and_bad_type(self):
        self.assertFalse(self.engine.add_category(self.user_id, "  ", "income")[0])
        self.assertFalse(self.engine.add_category(self.user_id, "Misc", "transfer")[0])

    def test_delete_in_use_is_refused(self):
        rent = self.category_id("Rent", "expense")
        self.engine.add_transaction(self.user_id, D(2024, 3, 1), "2400", "expense", category_id=rent)
        ok, message = self.engine.delete_category(self.user_id, rent)
        self.assertFalse(ok)
        self.assertIn("in use", message)

    def test_delete_unused_clears_recurring_category(self):
        rent = self.category_id("Rent", "expense")
        _, _, recurring_id = self.engine.add_recurring_definition(
            self.user_id, "expense", "2400", "monthly", category_id=rent,
        )
        ok, _ = self.engine.delete_category(self.user_id, rent)
        self.assertTrue(ok)
        self.assertIsNone(self.engine.get_recurring_definition(self.user_id, recurring_id).category_id)

    def test_cannot_delete_other_users_category(self):
        _, _, other = self.engine.register_user("other", "password123")
        rent = self.category_id("Rent", "expense")
        ok, message = self.engine.delete_category(other, rent)
        self.assertFalse(ok)
        self.assertIn("not found", message)


class TransactionTests(EngineTestCase):

    def test_add_and_list_month_newest_first(self):
        sales = self.category_id("Prescription Sales", "income")
        self.engine.add_transaction(self.user_id, "2024-03-01", "100.50", "income", category_id=sales)
        self.engine.add_transaction(self.user_id, "2024-03-15", "20", "expense", description="Bags")
        self.engine.add_transaction(self.user_id, "2024-04-01", "5", "expense")

        rows = self.engine.get_month_transactions(self.user_id, 2024, 3)
        self.assertEqual([r.date for r in rows], [D(2024, 3, 15), D(2024, 3, 1)])
        self.assertEqual(rows[1].amount, Decimal('100.50'))
        self.assertEqual(rows[1].category_name, "Prescription Sales")
        self.assertIsNone(rows[0].category_name)

    def test_validation(self):
        self.assertFalse(self.engine.add_transaction(self.user_id, "2024-03-01", "0", "income")[0])
        self.assertFalse(self.engine.add_transaction(self.user_id, "2024-03-01", "-5", "income")[0])
        self.assertFalse(self.engine.add_transaction(self.user_id, "2024-03-01", "abc", "income")[0])
        self.assertFalse(self.engine.add_transaction(self.user_id, "2024-03-01", "1e40", "income")[0])
        self.assertFalse(self.engine.add_transaction(self.user_id, "2024-03-01", "NaN", "income")[0])
        self.assertFalse(self.engine.add_transaction(self.user_id, "03/01/2024", "5", "income")[0])
        self.assertFalse(self.engine.add_transaction(self.user_id, "2024-03-01", "5", "refund")[0])

    def test_category_type_must_match(self):
        rent = self.category_id("Rent", "expense")
        ok, message, _ = self.engine.add_transaction(self.user_id, "2024-03-01", "5", "income", category_id=rent)
        self.assertFalse(ok)
        self.assertIn("income", message)

    def test_delete(self):
        _, _, tx_id = self.engine.add_transaction(self.user_id, "2024-03-01", "5", "income")
        self.assertTrue(self.engine.delete_transaction(self.user_id, tx_id)[0])
        self.assertFalse(self.engine.delete_transaction(self.user_id, tx_id)[0])


class RecurringStoreTests(EngineTestCase):

    def test_add_validates(self):
        self.assertFalse(self.engine.add_recurring_definition(self.user_id, "expense", "10", "yearly")[0])
        self.assertFalse(self.engine.add_recurring_definition(self.user_id, "expense", "10", "monthly", day_of_month=32)[0])
        self.assertFalse(self.engine.add_recurring_definition(self.user_id, "expense", "0", "monthly")[0])
        ok, message, _ = self.engine.add_recurring_definition(self.user_id, "expense", "1e40", "monthly")
        self.assertFalse(ok)
        self.assertEqual(message, "Amount must be a number.")

    def test_weekly_does_not_store_day_of_month(self):
        _, _, rid = self.engine.add_recurring_definition(self.user_id, "expense", "10", "weekly", day_of_month=12)
        self.assertIsNone(self.engine.get_recurring_definition(self.user_id, rid).day_of_month)

    def test_list_active_only(self):
        _, _, active = self.engine.add_recurring_definition(self.user_id, "expense", "10", "monthly")
        _, _, paused = self.engine.add_recurring_definition(self.user_id, "expense", "20", "monthly")
        self.engine.set_recurring_active(self.user_id, paused, False)

        ids = [d.id for d in self.engine.list_active_recurring_definitions(self.user_id)]
        self.assertEqual(ids, [active])
        self.assertEqual(len(self.engine.get_recurring_definitions(self.user_id)), 2)

    def test_edit(self):
        _, _, rid = self.engine.add_recurring_definition(self.user_id, "expense", "10", "monthly", description="Old")
        ok, _ = self.engine.edit_recurring_definition(
            self.user_id, rid, "expense", "12.5", "monthly", description="New", day_of_month=15,
        )
        self.assertTrue(ok)
        definition = self.engine.get_recurring_definition(self.user_id, rid)
        self.assertEqual(definition.amount, Decimal('12.50'))
        self.assertEqual(definition.description, "New")
        self.assertEqual(definition.day_of_month, 15)

    def test_atomic_rolls_back_insert_when_update_fails(self):
        with self.assertRaises(LookupError):
            with self.engine.atomic() as cursor:
                self.engine.insert_ledger_transaction(
                    self.user_id, D(2024, 3, 5), Decimal('10'), 'expense',
                    recurring_id=None, period_key=None, cursor=cursor,
                )
                self.engine.update_recurring_definition(self.user_id, 9999, D(2024, 3, 5), cursor=cursor)

        self.assertEqual(self.engine.get_month_transactions(self.user_id, 2024, 3), [])

    def test_natural_key_rejects_second_generation_for_a_period(self):
        _, _, rid = self.engine.add_recurring_definition(self.user_id, "expense", "10", "monthly")
        self.engine.insert_ledger_transaction(
            self.user_id, D(2024, 3, 1), Decimal('10'), 'expense', recurring_id=rid, period_key='2024-03',
        )
        with self.assertRaises(sqlite3.IntegrityError):
            self.engine.insert_ledger_transaction(
                self.user_id, D(2024, 3, 1), Decimal('10'), 'expense', recurring_id=rid, period_key='2024-03',
            )

    def test_deleting_definition_keeps_generated_transactions(self):
        _, _, rid = self.engine.add_recurring_definition(self.user_id, "expense", "10", "monthly")
        RecurringCheck(self.engine, self.user_id, clock=lambda: D(2024, 3, 10)).run_once()
        self.assertTrue(self.engine.delete_recurring_definition(self.user_id, rid)[0])

        rows = self.engine.get_month_transactions(self.user_id, 2024, 3)
        self.assertEqual(len(rows), 1)
        self.assertIsNone(rows[0].recurring_id)


class RecurringRunAgainstDatabaseTests(EngineTestCase):

    def test_generation_cycle_is_idempotent(self):
        rent = self.category_id("Rent", "expense")
        self.engine.add_recurring_definition(
            self.user_id, "expense", "2400", "monthly", category_id=rent, description="Shop rent", day_of_month=5,
        )
        self.engine.add_recurring_definition(self.user_id, "expense", "950", "weekly")
        self.engine.add_recurring_definition(self.user_id, "income", "5200", "monthly", day_of_month=20)

        clock = lambda: D(2024, 3, 10)
        first = RecurringCheck(self.engine, self.user_id, clock=clock).run_once()
        second = RecurringCheck(self.engine, self.user_id, clock=clock).run_once()

        self.assertEqual(first, 2)
        self.assertEqual(second, 0)

        rows = self.engine.get_month_transactions(self.user_id, 2024, 3)
        self.assertEqual(len(rows), 2)
        rent_row = next(r for r in rows if r.category_id == rent)
        self.assertEqual(rent_row.date, D(2024, 3, 5))
        self.assertEqual(rent_row.description, "Shop rent (automatic)")
        self.assertEqual(rent_row.amount, Decimal('2400.00'))

    def test_stale_last_generated_is_caught_by_natural_key(self):
        _, _, rid = self.engine.add_recurring_definition(self.user_id, "expense", "10", "monthly")
        self.engine.insert_ledger_transaction(
            self.user_id, D(2024, 3, 1), Decimal('10'), 'expense', recurring_id=rid, period_key='2024-03',
        )
        with self.assertLogs('pharmabooks.recurring', level='ERROR'):
            count = RecurringCheck(self.engine, self.user_id, clock=lambda: D(2024, 3, 10)).run_once()

        self.assertEqual(count, 0)
        self.assertEqual(len(self.engine.get_month_transactions(self.user_id, 2024, 3)), 1)
        self.assertIsNone(self.engine.get_recurring_definition(self.user_id, rid).last_generated)

    def test_other_users_definitions_are_untouched(self):
        _, _, other = self.engine.register_user("other", "password123")
        self.engine.add_recurring_definition(other, "expense", "10", "monthly")

        count = RecurringCheck(self.engine, self.user_id, clock=lambda: D(2024, 3, 10)).run_once()
        self.assertEqual(count, 0)
        self.assertEqual(self.engine.get_month_transactions(other, 2024, 3), [])


class ReportQueryTests(EngineTestCase):

    def test_dashboard(self):
        self.engine.add_transaction(self.user_id, "2024-03-01", "100", "income")
        self.engine.add_transaction(self.user_id, "2024-03-02", "40", "expense")
        dashboard = self.engine.get_dashboard(self.user_id, 2024, 3)
        self.assertEqual(dashboard['totals']['net'], Decimal('60.00'))
        self.assertEqual(dashboard['counts'], {'income': 1, 'expense': 1})
        self.assertEqual(len(dashboard['recent']), 2)

    def test_yearly_report_compares_january_with_previous_december(self):
        self.engine.add_transaction(self.user_id, "2023-12-10", "50", "income")
        self.engine.add_transaction(self.user_id, "2024-01-10", "75", "income")
        report = self.engine.get_yearly_report(self.user_id, 2024, today=D(2024, 1, 20), compare_month=1)

        self.assertEqual(report['monthly'][0]['income'], Decimal('75.00'))
        self.assertEqual(report['totals']['income'], Decimal('75.00'))
        comparison = report['comparison']
        self.assertEqual(comparison['previous']['income'], Decimal('50.00'))
        self.assertEqual(comparison['previous_month_name'], "December")
        self.assertAlmostEqual(comparison['income_change'], 50.0)

    def test_yearly_report_category_trend(self):
        sales = self.category_id("OTC Sales", "income")
        self.engine.add_transaction(self.user_id, "2023-11-05", "30", "income", category_id=sales)
        self.engine.add_transaction(self.user_id, "2024-02-05", "90", "income", category_id=sales)
        report = self.engine.get_yearly_report(self.user_id, 2024, today=D(2024, 2, 20), category_id=sales)

        trend = report['category_trend']
        self.assertEqual([p['month'] for p in trend['points']], [9, 10, 11, 12, 1, 2])
        self.assertEqual(trend['max'], Decimal('90.00'))
        self.assertEqual(trend['average'], Decimal('20.00'))
        self.assertEqual(report['formatted']['category_trend'], {'average': '$20.00', 'max': '$90.00'})

    def test_formatted_fields_use_currency_symbol(self):
        self.engine.add_transaction(self.user_id, "2024-02-10", "40", "expense")
        self.engine.add_transaction(self.user_id, "2024-03-10", "30", "expense")
        dashboard = self.engine.get_dashboard(self.user_id, 2024, 3, currency_symbol='₺')
        self.assertEqual(dashboard['formatted']['totals']['net'], '-₺30.00')

        report = self.engine.get_yearly_report(
            self.user_id, 2024, today=D(2024, 3, 20), compare_month=3, currency_symbol='₺',
        )
        self.assertEqual(report['formatted']['totals']['expense'], '₺70.00')
        self.assertEqual(report['formatted']['comparison']['expense_change'], '-25.0%')


class DemoDataTests(EngineTestCase):

    def test_same_seed_gives_same_data(self):
        _, _, other_id = self.engine.register_user("ikinci", "password123")
        first = generate_demo_data(self.engine, self.user_id, today=D(2024, 3, 10), seed=7)
        second = generate_demo_data(self.engine, other_id, today=D(2024, 3, 10), seed=7)
        self.assertEqual(first, second)

        descriptions = [
            [t.description for t in self.engine.get_month_transactions(uid, 2024, 2)]
            for uid in (self.user_id, other_id)
        ]
        self.assertEqual(descriptions[0], descriptions[1])

    def test_each_run_seeds_its_own_faker(self):
        _, _, other_id = self.engine.register_user("ikinci", "password123")
        with mock.patch('pharmabooks.demo_data.Faker', wraps=Faker) as factory:
            generate_demo_data(self.engine, self.user_id, today=D(2024, 3, 10), seed=7)
            generate_demo_data(self.engine, other_id, today=D(2024, 3, 10))
        self.assertEqual(factory.call_count, 2)


if __name__ == '__main__':
    unittest.main()
