"""
Pharma Books - Recurring Transaction Generation

Two pieces live here:

- evaluate(): the generation policy. Given one recurring definition and the
  reference date, decide whether a ledger transaction is due and build it.
  Pure: no I/O, no clock.
- RecurringCheck: the once-per-session runner. Fetches the user's active
  definitions from the store, applies the policy to each one and persists the
  results, isolating failures per definition.

Period rules:
- monthly: at most one generation per calendar month, on or after the
  definition's day of month. Days past the end of a short month are clamped
  to the month's last day (a definition for the 31st fires on Feb 28/29).
- weekly: at most one generation per trailing 7-day window ending today.
"""

import calendar
import datetime
import logging
from dataclasses import dataclass

from .models import MONTHLY, WEEKLY, LedgerTransaction, parse_date

logger = logging.getLogger(__name__)

AUTOMATIC_SUFFIX = "(automatic)"
DEFAULT_MONTHLY_DESCRIPTION = "Automatic recurring transaction"
DEFAULT_WEEKLY_DESCRIPTION = "Automatic weekly transaction"

WEEKLY_WINDOW_DAYS = 7

# Session run states
NOT_STARTED = 'not_started'
RUNNING = 'running'
CHECKED = 'checked'


@dataclass(frozen=True)
class Skip:
    reason: str

    generate = False


@dataclass(frozen=True)
class Generate:
    transaction: LedgerTransaction
    period_key: str

    generate = True

    @property
    def date(self):
        return self.transaction.date


def effective_day_of_month(day_of_month, year, month):
    """Clamp a 1-31 target day to the length of the given month."""
    target = day_of_month or 1
    return min(target, calendar.monthrange(year, month)[1])


def _generated_description(definition):
    if definition.description:
        return f"{definition.description} {AUTOMATIC_SUFFIX}"
    if definition.frequency == WEEKLY:
        return DEFAULT_WEEKLY_DESCRIPTION
    return DEFAULT_MONTHLY_DESCRIPTION


def _build(definition, on_date, period_key):
    transaction = LedgerTransaction(
        date=on_date,
        amount=definition.amount,
        type=definition.type,
        category_id=definition.category_id,
        description=_generated_description(definition),
        recurring_id=definition.id,
    )
    return Generate(transaction=transaction, period_key=period_key)


def _evaluate_monthly(definition, today):
    last = parse_date(definition.last_generated)
    if last and (last.year, last.month) == (today.year, today.month):
        return Skip("already generated this month")

    target_day = effective_day_of_month(definition.day_of_month, today.year, today.month)
    if today.day < target_day:
        return Skip(f"day {target_day} not reached")

    on_date = datetime.date(today.year, today.month, target_day)
    return _build(definition, on_date, on_date.strftime('%Y-%m'))


def _evaluate_weekly(definition, today):
    last = parse_date(definition.last_generated)
    window_start = today - datetime.timedelta(days=WEEKLY_WINDOW_DAYS)
    if last and last > window_start:
        return Skip("already generated within the last 7 days")

    return _build(definition, today, today.isoformat())


def evaluate(definition, now):
    """
    Decide whether a recurring definition is due on `now`.

    Args:
        definition (RecurringDefinition): The definition to evaluate.
        now (date | datetime): Reference instant; only its date is used.

    Returns:
        Skip | Generate: Generate carries the ledger transaction to insert
        and the period key it fills.
    """
    today = now.date() if isinstance(now, datetime.datetime) else now

    if not definition.is_active:
        return Skip("inactive")
    if definition.frequency == MONTHLY:
        return _evaluate_monthly(definition, today)
    if definition.frequency == WEEKLY:
        return _evaluate_weekly(definition, today)
    return Skip(f"unknown frequency {definition.frequency!r}")


class RecurringCheck:
    """
    One generation cycle for one user's session.

    The run state (not_started -> running -> checked) belongs to the caller:
    the API keeps it in the Flask session through snapshot()/restore(), so a
    session runs the cycle at most once and a new sign-in starts a new one.

    The store must provide:
        list_active_recurring_definitions(user_id) -> list[RecurringDefinition]
        insert_ledger_transaction(user_id, transaction_date, amount, type_,
                                  category_id, description, recurring_id,
                                  period_key, cursor)
        update_recurring_definition(user_id, recurring_id, last_generated, cursor)
        atomic() -> context manager yielding a cursor (one unit of work)

    Example:
        check = RecurringCheck(engine, user_id=1)
        generated = check.run_once()
    """

    def __init__(self, store, user_id, clock=None, state=NOT_STARTED, generated_count=0):
        self.store = store
        self.user_id = user_id
        self.clock = clock or datetime.date.today
        self.state = state
        self.generated_count = generated_count

    @property
    def checked(self):
        return self.state == CHECKED

    def run_once(self):
        """Run the cycle if it has not run yet; return the generated count."""
        if self.state != NOT_STARTED:
            return self.generated_count

        self.state = RUNNING
        self.generated_count = 0
        try:
            definitions = self.store.list_active_recurring_definitions(self.user_id)
        except Exception:
            logger.exception("[RECURRING] User %s: could not fetch recurring definitions", self.user_id)
            self.state = CHECKED
            return 0

        if not definitions:
            self.state = CHECKED
            return 0

        now = self.clock()
        for definition in definitions:
            if self._process(definition, now):
                self.generated_count += 1

        self.state = CHECKED
        logger.info(
            "[RECURRING] User %s: generated %d transaction(s) from %d active definition(s)",
            self.user_id, self.generated_count, len(definitions),
        )
        return self.generated_count

    def _process(self, definition, now):
        try:
            decision = evaluate(definition, now)
            if not decision.generate:
                logger.debug("[RECURRING] Definition %s skipped: %s", definition.id, decision.reason)
                return False

            tx = decision.transaction
            # Insert and last_generated update commit or roll back together.
            with self.store.atomic() as cursor:
                self.store.insert_ledger_transaction(
                    self.user_id,
                    tx.date,
                    tx.amount,
                    tx.type,
                    category_id=tx.category_id,
                    description=tx.description,
                    recurring_id=definition.id,
                    period_key=decision.period_key,
                    cursor=cursor,
                )
                self.store.update_recurring_definition(
                    self.user_id, definition.id, last_generated=tx.date, cursor=cursor,
                )
        except Exception:
            logger.exception("[RECURRING] Definition %s: generation failed, will retry next session", definition.id)
            return False

        logger.info("[RECURRING] Definition %s: generated %s on %s", definition.id, tx.type, tx.date)
        return True

    def snapshot(self):
        return {'state': self.state, 'generated_count': self.generated_count}

    @classmethod
    def restore(cls, store, user_id, snapshot, clock=None):
        snapshot = snapshot or {}
        return cls(
            store,
            user_id,
            clock=clock,
            state=snapshot.get('state', NOT_STARTED),
            generated_count=snapshot.get('generated_count', 0),
        )
