"""
Pharma Books - Demo Data Generator

Generates realistic fake bookkeeping data for demo mode.
Creates a neighbourhood pharmacy with about 4 months of income and expenses
plus a handful of recurring definitions.
"""

import logging
import random
from datetime import date, timedelta

from faker import Faker

from .models import EXPENSE, INCOME, MONTHLY, WEEKLY

logger = logging.getLogger(__name__)

HISTORY_DAYS = 120

RECURRING_TEMPLATES = [
    {"type": EXPENSE, "category": "Rent", "description": "Shop rent", "amount": 2400, "frequency": MONTHLY, "day": 1},
    {"type": EXPENSE, "category": "Salaries", "description": "Pharmacy technician salary", "amount": 3100, "frequency": MONTHLY, "day": 28},
    {"type": EXPENSE, "category": "Utilities", "description": "Electricity", "amount": 180, "frequency": MONTHLY, "day": 15},
    {"type": EXPENSE, "category": "Drug Purchases", "description": "Wholesaler standing order", "amount": 950, "frequency": WEEKLY, "day": None},
    {"type": INCOME, "category": "Insurance Reimbursements", "description": "Insurance settlement", "amount": 5200, "frequency": MONTHLY, "day": 20},
]

TRANSACTION_TEMPLATES = [
    # (type, category, descriptions, min, max, every N days on average)
    {"type": INCOME, "category": "Prescription Sales", "descriptions": ["Daily prescription sales"], "min": 350, "max": 900, "frequency": 1},
    {"type": INCOME, "category": "OTC Sales", "descriptions": ["OTC counter sales", "Cosmetics sales", "Vitamins & supplements"], "min": 80, "max": 400, "frequency": 2},
    {"type": EXPENSE, "category": "Drug Purchases", "descriptions": None, "min": 200, "max": 1500, "frequency": 6},
    {"type": EXPENSE, "category": "Other Expenses", "descriptions": ["Cleaning supplies", "Printer paper & labels", "Pharmacy bags", "Card terminal fee"], "min": 15, "max": 120, "frequency": 9},
    {"type": EXPENSE, "category": "Taxes", "descriptions": ["VAT payment", "Withholding tax"], "min": 300, "max": 1200, "frequency": 30},
]


def generate_demo_data(engine, user_id, today=None, seed=None):
    """
    Generate realistic demo data for a user.

    Creates:
    - Recurring rent, salary, utilities, a weekly wholesaler order and a
      monthly insurance reimbursement
    - ~4 months of daily sales and occasional purchases and expenses

    Args:
        engine: BooksEngine instance
        user_id: User ID to generate data for (must already have the default categories)
        today (date, optional): Last day of generated history (default: today)
        seed (int, optional): Seed for reproducible data

    Returns:
        dict: Summary of what was generated
    """
    today = today or date.today()
    rng = random.Random(seed)
    faker = Faker()
    if seed is not None:
        faker.seed_instance(seed)

    start_date = today - timedelta(days=HISTORY_DAYS)
    logger.info("[DEMO] Generating demo data for user %s from %s to %s", user_id, start_date, today)

    category_map = {(c.name, c.type): c.id for c in engine.get_categories(user_id)}

    # ===== RECURRING DEFINITIONS =====

    recurring_count = 0
    for rec in RECURRING_TEMPLATES:
        category_id = category_map.get((rec['category'], rec['type']))
        if category_id is None:
            logger.warning("[DEMO] Category '%s' not found, will be uncategorized", rec['category'])

        success, message, _ = engine.add_recurring_definition(
            user_id,
            rec['type'],
            rec['amount'],
            rec['frequency'],
            category_id=category_id,
            description=rec['description'],
            day_of_month=rec['day'],
        )
        if success:
            recurring_count += 1
        else:
            logger.error("[DEMO] Error adding recurring '%s': %s", rec['description'], message)

    # ===== HISTORICAL TRANSACTIONS =====

    suppliers = [f"{faker.company()} Pharma" for _ in range(4)]
    transaction_count = 0
    day = start_date
    while day <= today:
        for template in TRANSACTION_TEMPLATES:
            if rng.random() >= 1.0 / template['frequency']:
                continue
            if template['descriptions']:
                description = rng.choice(template['descriptions'])
            else:
                description = f"Invoice {faker.bothify('??-#####').upper()} - {rng.choice(suppliers)}"

            success, message, _ = engine.add_transaction(
                user_id,
                day,
                round(rng.uniform(template['min'], template['max']), 2),
                template['type'],
                category_id=category_map.get((template['category'], template['type'])),
                description=description,
            )
            if success:
                transaction_count += 1
            else:
                logger.error("[DEMO] Error adding transaction on %s: %s", day, message)
        day += timedelta(days=1)

    logger.info("[DEMO] Generated %d transactions and %d recurring definitions", transaction_count, recurring_count)

    return {
        "recurring_created": recurring_count,
        "transactions_generated": transaction_count,
        "date_range": f"{start_date} to {today}",
        "persona": f"{faker.last_name()} Pharmacy",
    }
