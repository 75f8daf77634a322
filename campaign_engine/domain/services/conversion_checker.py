"""
Conversion Checker
Detects recipients who placed a qualifying order after enrolling.

Orders are loaded once per pass into a ConversionSnapshot bounded by the
pass start time, so every decision inside a run sees the same data even if
new orders arrive while it is processing.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from campaign_engine.infrastructure.storage.models import RecipientRecord
from campaign_engine.infrastructure.storage.repositories import CustomerRepository

logger = logging.getLogger(__name__)

# Orders in these states never count as a conversion
NON_QUALIFYING_ORDER_STATUSES = ("DRAFT", "CANCELLED")


@dataclass(frozen=True)
class ConversionEvidence:
    order_id: str
    order_value: float
    order_created_at: datetime


@dataclass(frozen=True)
class OrderFact:
    order_id: str
    customer_id: str
    total: float
    created_at: datetime


class ConversionSnapshot:
    """Point-in-time view of qualifying orders for a set of customers."""

    def __init__(self, as_of: datetime, orders: Iterable[OrderFact]):
        self.as_of = as_of
        self._by_customer: Dict[str, List[OrderFact]] = {}
        for order in sorted(orders, key=lambda o: (o.created_at, o.order_id)):
            self._by_customer.setdefault(order.customer_id, []).append(order)

    @classmethod
    def load(cls, session: Session, customer_ids: Iterable[str], since: datetime,
             as_of: datetime) -> "ConversionSnapshot":
        ids = list(customer_ids)
        orders = CustomerRepository(session).qualifying_orders(ids, since, as_of)
        facts = [
            OrderFact(o.id, o.customer_id, float(o.total_real or 0.0), o.created_at)
            for o in orders
        ]
        logger.debug(f"Conversion snapshot: {len(facts)} qualifying orders for {len(ids)} customers")
        return cls(as_of, facts)

    def first_order_since(self, customer_id: str, since: datetime) -> Optional[OrderFact]:
        for order in self._by_customer.get(customer_id, []):
            if since <= order.created_at <= self.as_of:
                return order
        return None


class ConversionChecker:
    """Decides whether a recipient has converted, against a fixed snapshot."""

    def __init__(self, snapshot: ConversionSnapshot):
        self.snapshot = snapshot

    def check(self, recipient: RecipientRecord) -> Optional[ConversionEvidence]:
        """
        Return evidence of conversion, or None.

        A conversion is the earliest order created at or after enrolled_at
        whose status is not DRAFT or CANCELLED.
        """
        order = self.snapshot.first_order_since(recipient.customer_id, recipient.enrolled_at)
        if order is None:
            return None
        return ConversionEvidence(order.order_id, order.total, order.created_at)
