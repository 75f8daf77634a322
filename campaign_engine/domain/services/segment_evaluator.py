"""
Segment Evaluator
Compiles declarative segment definitions into SQLAlchemy filters over customers.

Only fields in SEGMENT_FIELDS can be queried. Each field knows which operators
it accepts and how to express itself in SQL, so no user input is ever spliced
into a query string. Offset fields ("days since", "age") are compiled into
timestamp comparisons against an explicit `now`, which keeps results
deterministic and portable across database engines.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Union

from pydantic import ValidationError
from sqlalchemy import and_, exists, extract, func, not_, or_, select
from sqlalchemy.orm import Session, aliased
from sqlalchemy.sql.elements import ColumnElement

from campaign_engine.domain.errors import SegmentValidationError
from campaign_engine.domain.models.message import MessageChannel
from campaign_engine.domain.models.segment import (
    SegmentCondition,
    SegmentDefinition,
    SegmentLogic,
    SegmentOperator as Op,
)
from campaign_engine.infrastructure.storage.models import (
    Customer,
    Exam,
    InsurancePolicy,
    MessageRecord,
    Order,
    Prescription,
)
from campaign_engine.utils.clock import shift_years, utcnow

logger = logging.getLogger(__name__)

ExprFactory = Callable[[], ColumnElement]


class FieldKind(str, Enum):
    """Value type a segment field compares against"""
    NUMBER = "number"
    BOOLEAN = "boolean"
    STRING = "string"
    ENUM = "enum"


COMPARISONS = frozenset({Op.GT, Op.GTE, Op.LT, Op.LTE, Op.BETWEEN})
NULL_CHECKS = frozenset({Op.IS_NULL, Op.IS_NOT_NULL})


# ---------------------------------------------------------------------------
# Field shapes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SegmentField:
    """Base registry entry: metadata plus value validation."""
    label: str
    description: str
    kind: FieldKind
    operators: FrozenSet[Op]

    def compile(self, condition: SegmentCondition, now: datetime) -> ColumnElement:
        raise NotImplementedError

    def check(self, condition: SegmentCondition) -> None:
        """Validate operator and value(s) for this field."""
        op = condition.operator
        if op not in self.operators:
            allowed = ", ".join(sorted(o.value for o in self.operators))
            raise SegmentValidationError(
                f"Operator '{op.value}' is not allowed for field '{condition.field}' (allowed: {allowed})"
            )
        if op in NULL_CHECKS:
            return
        if op in (Op.IN, Op.NOT_IN):
            if not isinstance(condition.value, list) or not condition.value:
                raise SegmentValidationError(
                    f"Operator '{op.value}' on '{condition.field}' needs a non-empty list value"
                )
            for item in condition.value:
                self._check_scalar(condition.field, item)
            return
        if op == Op.BETWEEN:
            self._check_scalar(condition.field, condition.value)
            self._check_scalar(condition.field, condition.value2)
            if condition.value > condition.value2:
                raise SegmentValidationError(
                    f"'between' on '{condition.field}' needs value <= value2"
                )
            return
        if op == Op.CONTAINS and (not isinstance(condition.value, str) or not condition.value):
            raise SegmentValidationError(f"'contains' on '{condition.field}' needs a non-empty string")
        self._check_scalar(condition.field, condition.value)

    def _check_scalar(self, field_name: str, value: Any) -> None:
        if value is None:
            raise SegmentValidationError(f"Condition on '{field_name}' is missing a value")
        if self.kind == FieldKind.NUMBER:
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise SegmentValidationError(f"Field '{field_name}' expects a number, got {value!r}")
        elif self.kind == FieldKind.BOOLEAN:
            if not isinstance(value, bool):
                raise SegmentValidationError(f"Field '{field_name}' expects true/false, got {value!r}")
        elif not isinstance(value, str):
            raise SegmentValidationError(f"Field '{field_name}' expects text, got {value!r}")


@dataclass(frozen=True)
class ValueField(SegmentField):
    """A column or scalar subquery compared directly."""
    expr: ExprFactory = None

    def compile(self, condition: SegmentCondition, now: datetime) -> ColumnElement:
        self.check(condition)
        column = self.expr()
        op, value = condition.operator, condition.value

        if op == Op.EQ:
            return column == value
        if op == Op.NEQ:
            return column != value
        if op == Op.GT:
            return column > value
        if op == Op.GTE:
            return column >= value
        if op == Op.LT:
            return column < value
        if op == Op.LTE:
            return column <= value
        if op == Op.IN:
            return column.in_(value)
        if op == Op.NOT_IN:
            return not_(column.in_(value))
        if op == Op.BETWEEN:
            return column.between(value, condition.value2)
        if op == Op.CONTAINS:
            escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            return column.ilike(f"%{escaped}%", escape="\\")
        if op == Op.IS_NULL:
            return column.is_(None)
        if op == Op.IS_NOT_NULL:
            return column.isnot(None)
        raise SegmentValidationError(f"Unsupported operator: {op.value}")


@dataclass(frozen=True)
class ElapsedField(SegmentField):
    """
    Whole units between a timestamp and now.

    `since` fields count from the timestamp to now (days since last exam, age);
    otherwise count from now to the timestamp (days until Rx expiry). The
    value N compares against floor(elapsed), so "value >= N" is exactly a
    timestamp bound and every operator reduces to ge()/lt() below.
    """
    expr: ExprFactory = None
    since: bool = True
    unit: str = "days"  # days | years

    def _moment(self, now: datetime, n: int) -> Union[datetime, date]:
        offset = n if not self.since else -n
        if self.unit == "years":
            return shift_years(now, offset).date()
        return now + timedelta(days=offset)

    def _ge(self, column, now: datetime, n: int) -> ColumnElement:
        moment = self._moment(now, n)
        return column <= moment if self.since else column >= moment

    def _lt(self, column, now: datetime, n: int) -> ColumnElement:
        moment = self._moment(now, n)
        return column > moment if self.since else column < moment

    def _eq(self, column, now: datetime, n: int) -> ColumnElement:
        return and_(self._ge(column, now, n), self._lt(column, now, n + 1))

    def _check_scalar(self, field_name: str, value: Any) -> None:
        super()._check_scalar(field_name, value)
        if isinstance(value, float) and not value.is_integer():
            raise SegmentValidationError(f"Field '{field_name}' expects a whole number, got {value!r}")

    def compile(self, condition: SegmentCondition, now: datetime) -> ColumnElement:
        self.check(condition)
        column = self.expr()
        op = condition.operator

        if op == Op.IS_NULL:
            return column.is_(None)
        if op == Op.IS_NOT_NULL:
            return column.isnot(None)
        if op in (Op.IN, Op.NOT_IN):
            matched = or_(*[self._eq(column, now, int(v)) for v in condition.value])
            return matched if op == Op.IN else and_(column.isnot(None), not_(matched))

        n = int(condition.value)
        if op == Op.EQ:
            return self._eq(column, now, n)
        if op == Op.NEQ:
            return and_(column.isnot(None), not_(self._eq(column, now, n)))
        if op == Op.GTE:
            return self._ge(column, now, n)
        if op == Op.GT:
            return self._ge(column, now, n + 1)
        if op == Op.LT:
            return self._lt(column, now, n)
        if op == Op.LTE:
            return self._lt(column, now, n + 1)
        if op == Op.BETWEEN:
            return and_(self._ge(column, now, n), self._lt(column, now, int(condition.value2) + 1))
        raise SegmentValidationError(f"Unsupported operator: {op.value}")


@dataclass(frozen=True)
class PredicateField(SegmentField):
    """A yes/no fact about the customer, usually an EXISTS subquery."""
    predicate: ExprFactory = None

    def compile(self, condition: SegmentCondition, now: datetime) -> ColumnElement:
        self.check(condition)
        clause = self.predicate()
        return clause if condition.value else not_(clause)


# ---------------------------------------------------------------------------
# Correlated subqueries against the outer Customer row
# ---------------------------------------------------------------------------

def _picked_up_orders():
    return and_(Order.customer_id == Customer.id, Order.status == "PICKED_UP")


def _lifetime_order_count():
    return select(func.count(Order.id)).where(_picked_up_orders()).correlate(Customer).scalar_subquery()


def _lifetime_spend():
    return (
        select(func.coalesce(func.sum(Order.total_real), 0.0))
        .where(_picked_up_orders())
        .correlate(Customer)
        .scalar_subquery()
    )


def _last_pickup_at():
    return select(func.max(Order.picked_up_at)).where(_picked_up_orders()).correlate(Customer).scalar_subquery()


def _last_frame_brand():
    return (
        select(Order.frame_brand)
        .where(_picked_up_orders())
        .order_by(Order.picked_up_at.desc())
        .limit(1)
        .correlate(Customer)
        .scalar_subquery()
    )


def _last_exam_at():
    return select(func.max(Exam.exam_date)).where(Exam.customer_id == Customer.id).correlate(Customer).scalar_subquery()


def _has_exam():
    return exists(select(Exam.id).where(Exam.customer_id == Customer.id).correlate(Customer))


def _active_rx():
    return and_(Prescription.customer_id == Customer.id, Prescription.is_active.is_(True))


def _rx_expiry():
    return select(func.max(Prescription.expiry_date)).where(_active_rx()).correlate(Customer).scalar_subquery()


def _rx_type():
    return (
        select(Prescription.type)
        .where(_active_rx())
        .order_by(Prescription.date.desc())
        .limit(1)
        .correlate(Customer)
        .scalar_subquery()
    )


def _has_family_members():
    relative = aliased(Customer)
    return and_(
        Customer.family_id.isnot(None),
        exists(
            select(relative.id)
            .where(relative.family_id == Customer.family_id, relative.id != Customer.id)
            .correlate(Customer)
        ),
    )


def _active_insurance():
    return and_(InsurancePolicy.customer_id == Customer.id, InsurancePolicy.is_active.is_(True))


def _insurance_renewal_month():
    return (
        select(func.max(InsurancePolicy.renewal_month))
        .where(_active_insurance())
        .correlate(Customer)
        .scalar_subquery()
    )


def _has_active_insurance():
    return exists(select(InsurancePolicy.id).where(_active_insurance()).correlate(Customer))


_NUMERIC = frozenset({Op.EQ, Op.NEQ, Op.GT, Op.GTE, Op.LT, Op.LTE, Op.BETWEEN})
_ELAPSED = COMPARISONS | NULL_CHECKS | {Op.EQ}

SEGMENT_FIELDS: Dict[str, SegmentField] = {
    # Customer basics
    "age": ElapsedField(
        "Customer Age", "Age in years based on date of birth", FieldKind.NUMBER,
        frozenset(_ELAPSED), expr=lambda: Customer.date_of_birth, since=True, unit="years",
    ),
    "birthdayMonth": ValueField(
        "Birthday Month", "Month number of customer's birthday (1-12)", FieldKind.NUMBER,
        frozenset({Op.EQ, Op.IN}), expr=lambda: extract("month", Customer.date_of_birth),
    ),
    "gender": ValueField(
        "Gender", "Customer gender", FieldKind.ENUM,
        frozenset({Op.EQ, Op.NEQ, Op.IN, Op.NOT_IN}), expr=lambda: Customer.gender,
    ),
    "city": ValueField(
        "City", "Customer city", FieldKind.STRING,
        frozenset({Op.EQ, Op.NEQ, Op.CONTAINS, Op.IN}) | NULL_CHECKS, expr=lambda: Customer.city,
    ),
    "tags": ValueField(
        "Customer Tags", "Custom tags applied to the customer", FieldKind.STRING,
        frozenset({Op.CONTAINS}) | NULL_CHECKS, expr=lambda: Customer.tags,
    ),
    "isOnboarded": ValueField(
        "Is Onboarded", "Whether customer has completed intake forms", FieldKind.BOOLEAN,
        frozenset({Op.EQ}), expr=lambda: Customer.is_onboarded,
    ),
    # Order history
    "lifetimeOrderCount": ValueField(
        "Lifetime Order Count", "Total number of picked up orders", FieldKind.NUMBER,
        _NUMERIC, expr=_lifetime_order_count,
    ),
    "lifetimeSpend": ValueField(
        "Lifetime Spend", "Total spend across all picked up orders", FieldKind.NUMBER,
        COMPARISONS, expr=_lifetime_spend,
    ),
    "daysSinceLastOrder": ElapsedField(
        "Days Since Last Order", "Days since most recent picked up order", FieldKind.NUMBER,
        frozenset(_ELAPSED), expr=_last_pickup_at, since=True,
    ),
    "orderFrameBrand": ValueField(
        "Last Frame Brand", "Brand of frame from most recent order", FieldKind.STRING,
        frozenset({Op.EQ, Op.NEQ, Op.CONTAINS, Op.IN}), expr=_last_frame_brand,
    ),
    # Exams
    "daysSinceLastExam": ElapsedField(
        "Days Since Last Exam", "Days since most recent eye exam", FieldKind.NUMBER,
        frozenset(_ELAPSED), expr=_last_exam_at, since=True,
    ),
    "hasExam": PredicateField(
        "Has Exam on Record", "Customer has at least one exam recorded", FieldKind.BOOLEAN,
        frozenset({Op.EQ}), predicate=_has_exam,
    ),
    # Prescriptions
    "rxExpiresInDays": ElapsedField(
        "Rx Expires In Days", "Days until current prescription expires", FieldKind.NUMBER,
        frozenset(_ELAPSED), expr=_rx_expiry, since=False,
    ),
    "rxType": ValueField(
        "Rx Type", "Type of most recent active prescription", FieldKind.ENUM,
        frozenset({Op.EQ, Op.IN}), expr=_rx_type,
    ),
    # Family
    "hasFamilyMembers": PredicateField(
        "Has Family Members", "Customer belongs to a family group", FieldKind.BOOLEAN,
        frozenset({Op.EQ}), predicate=_has_family_members,
    ),
    # Insurance
    "insuranceRenewalMonth": ValueField(
        "Insurance Renewal Month", "Month when insurance renews (1-12)", FieldKind.NUMBER,
        frozenset({Op.EQ, Op.IN}), expr=_insurance_renewal_month,
    ),
    "hasActiveInsurance": PredicateField(
        "Has Active Insurance", "Customer has an active insurance policy", FieldKind.BOOLEAN,
        frozenset({Op.EQ}), predicate=_has_active_insurance,
    ),
}


@dataclass
class SegmentPreview:
    """Read-only preview of a segment"""
    count: int
    sample: List[Dict[str, Optional[str]]]

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "sample": self.sample}


def coerce_definition(definition: Union[SegmentDefinition, Dict[str, Any]]) -> SegmentDefinition:
    """Accept a parsed definition or a raw JSON blob."""
    if isinstance(definition, SegmentDefinition):
        return definition
    try:
        return SegmentDefinition.model_validate(definition)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise SegmentValidationError(f"Invalid segment: {location}: {first.get('msg')}")


class SegmentEvaluator:
    """
    Evaluates segment definitions against the customer table.

    Provides:
    - Validation against the field allow-list
    - Count and sampled preview (strictly read-only)
    - Full matching id list for automatic enrollment
    """

    def __init__(
        self,
        fields: Optional[Dict[str, SegmentField]] = None,
        sample_size: int = 10,
    ):
        self.fields = fields or SEGMENT_FIELDS
        self.sample_size = sample_size

    def validate(self, definition: Union[SegmentDefinition, Dict[str, Any]]) -> SegmentDefinition:
        """Parse and compile a definition without touching the database."""
        parsed = coerce_definition(definition)
        self.build_filter(parsed, utcnow())
        return parsed

    def compile_condition(self, condition: SegmentCondition, now: datetime) -> ColumnElement:
        field_def = self.fields.get(condition.field)
        if field_def is None:
            raise SegmentValidationError(f"Unknown segment field: {condition.field}")
        return field_def.compile(condition, now)

    def build_filter(self, definition: SegmentDefinition, now: datetime) -> ColumnElement:
        """Build the WHERE clause for a segment."""
        clauses = [Customer.is_active.is_(True)]

        if definition.exclude_marketing_opt_out:
            clauses.append(Customer.marketing_opt_out.is_(False))

        if definition.require_channel == MessageChannel.SMS:
            clauses.extend([Customer.sms_opt_in.is_(True), Customer.phone.isnot(None), Customer.phone != ""])
        elif definition.require_channel == MessageChannel.EMAIL:
            clauses.extend([Customer.email_opt_in.is_(True), Customer.email.isnot(None), Customer.email != ""])

        if definition.exclude_recently_contacted:
            cutoff = now - timedelta(days=definition.exclude_recently_contacted)
            clauses.append(
                not_(
                    exists(
                        select(MessageRecord.id)
                        .where(MessageRecord.customer_id == Customer.id, MessageRecord.created_at >= cutoff)
                        .correlate(Customer)
                    )
                )
            )

        conditions = [self.compile_condition(c, now) for c in definition.conditions]
        if conditions:
            combined = and_(*conditions) if definition.logic == SegmentLogic.AND else or_(*conditions)
            clauses.append(combined)

        return and_(*clauses)

    def count(self, session: Session, definition: SegmentDefinition, now: Optional[datetime] = None) -> int:
        where = self.build_filter(definition, now or utcnow())
        return session.execute(select(func.count(Customer.id)).where(where)).scalar_one()

    def sample(
        self,
        session: Session,
        definition: SegmentDefinition,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Optional[str]]]:
        where = self.build_filter(definition, now or utcnow())
        stmt = (
            select(Customer.id, Customer.first_name, Customer.last_name, Customer.phone, Customer.email)
            .where(where)
            .order_by(Customer.last_name, Customer.first_name, Customer.id)
            .limit(limit or self.sample_size)
        )
        return [
            {
                "id": row.id,
                "firstName": row.first_name,
                "lastName": row.last_name,
                "phone": row.phone,
                "email": row.email,
            }
            for row in session.execute(stmt)
        ]

    def matching_ids(self, session: Session, definition: SegmentDefinition,
                     now: Optional[datetime] = None) -> List[str]:
        """Every matching customer id, in a stable order."""
        where = self.build_filter(definition, now or utcnow())
        stmt = select(Customer.id).where(where).order_by(Customer.id)
        return list(session.execute(stmt).scalars())

    def preview(
        self,
        session: Session,
        definition: Union[SegmentDefinition, Dict[str, Any]],
        now: Optional[datetime] = None,
    ) -> SegmentPreview:
        """Count plus bounded sample. Never writes."""
        parsed = coerce_definition(definition)
        now = now or utcnow()
        count = self.count(session, parsed, now)
        sample = self.sample(session, parsed, now=now) if count else []
        logger.debug(f"Segment preview matched {count} customers")
        return SegmentPreview(count=count, sample=sample)

    def list_fields(self) -> List[Dict[str, Any]]:
        """Field metadata for building segment editors."""
        return [
            {
                "field": name,
                "label": f.label,
                "description": f.description,
                "type": f.kind.value,
                "operators": sorted(o.value for o in f.operators),
            }
            for name, f in self.fields.items()
        ]
