"""
Recurring transaction producer.

Run once per day by an external scheduler. Each eligible rule creates one
transaction through the regular Add path; the rule's last_run_date is written
on the same session first, so the marker and the new transaction commit (or
roll back) together and a second run on the same day creates nothing.
"""
from datetime import date
from typing import Optional
import logging

from sqlalchemy import select, or_
from sqlalchemy.orm import Session

from finflow.core.exceptions import BaseAppException
from finflow.models import RecurringTransaction
from finflow.schemas import Frequency, TransactionCreate, parse_or_raise
from finflow.services.transaction_mutation_service import TransactionMutationService

logger = logging.getLogger("finflow.recurring")


def should_run_today(frequency: str, last_run: Optional[date], today: date) -> bool:
    if last_run is None:
        return True
    if frequency == Frequency.DAILY:
        return True
    if frequency == Frequency.WEEKLY:
        return (today - last_run).days >= 7
    if frequency == Frequency.MONTHLY:
        return (today.year, today.month) != (last_run.year, last_run.month)
    if frequency == Frequency.YEARLY:
        return today.year != last_run.year
    return False


class RecurringService:
    def __init__(self, db: Session, mutations: Optional[TransactionMutationService] = None):
        self.db = db
        self.mutations = mutations or TransactionMutationService(db)

    def due_rules(self, today: date):
        stmt = select(RecurringTransaction).where(
            RecurringTransaction.is_active.is_(True),
            RecurringTransaction.start_date <= today,
            or_(RecurringTransaction.end_date.is_(None), RecurringTransaction.end_date >= today),
            or_(RecurringTransaction.last_run_date.is_(None), RecurringTransaction.last_run_date < today),
        )
        return [
            rule for rule in self.db.execute(stmt).scalars().all()
            if should_run_today(rule.frequency, rule.last_run_date, today)
        ]

    def run_due(self, today: Optional[date] = None) -> int:
        """Create today's transactions for every due rule. Returns how many were created."""
        today = today or date.today()
        rule_ids = [rule.id for rule in self.due_rules(today)]
        created = 0

        for rule_id in rule_ids:
            rule = self.db.get(RecurringTransaction, rule_id)
            try:
                # Flushed and committed by the Add path together with the new row.
                rule.last_run_date = today
                data = parse_or_raise(
                    TransactionCreate,
                    category_id=rule.category_id,
                    amount=rule.amount,
                    note=rule.note,
                    transaction_date=today,
                )
                self.mutations.add(rule.user_id, data)
                created += 1
            except BaseAppException as e:
                self.db.rollback()
                logger.error(f"Recurring rule {rule_id} failed: {e.message}")

        logger.info(f"Recurring run for {today.isoformat()}: {created} transaction(s) created")
        return created
