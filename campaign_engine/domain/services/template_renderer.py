"""
Message Template Renderer
Fills {{token}} placeholders in campaign message bodies.

Rendering goes through a sandboxed Jinja2 environment. Tokens that have no
resolved value are written back unchanged so a typo in a template is visible
in the sent message instead of silently disappearing.
"""
import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Union

from jinja2 import TemplateError, TemplateSyntaxError, Undefined
from jinja2.sandbox import SandboxedEnvironment
from sqlalchemy.orm import Session

from campaign_engine.core.config import ConfigManager
from campaign_engine.domain.errors import TemplateRenderError
from campaign_engine.domain.models.message import MessageChannel
from campaign_engine.infrastructure.storage.repositories import CustomerRepository

logger = logging.getLogger(__name__)


# Variables available to template authors, in display order
TEMPLATE_VARIABLES: List[Dict[str, str]] = [
    {"key": "firstName", "label": "First Name"},
    {"key": "lastName", "label": "Last Name"},
    {"key": "fullName", "label": "Full Name"},
    {"key": "phone", "label": "Phone Number"},
    {"key": "email", "label": "Email Address"},
    {"key": "frameBrand", "label": "Last Frame Brand"},
    {"key": "frameModel", "label": "Last Frame Model"},
    {"key": "orderDate", "label": "Last Order Date"},
    {"key": "rxExpiryDate", "label": "Prescription Expiry Date"},
    {"key": "insuranceProvider", "label": "Insurance Provider"},
    {"key": "insuranceRenewalMonth", "label": "Insurance Renewal Month"},
    {"key": "examDate", "label": "Last Exam Date"},
    {"key": "storeName", "label": "Store Name"},
    {"key": "storePhone", "label": "Store Phone"},
]

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]


class KeepUnknownUndefined(Undefined):
    """Undefined that prints the original placeholder back."""

    def __str__(self) -> str:
        if self._undefined_name is None:
            return ""
        return "{{" + str(self._undefined_name) + "}}"

    def __getattr__(self, name: str) -> "KeepUnknownUndefined":
        if name[:2] == "__":
            raise AttributeError(name)
        return self._child(name)

    def __getitem__(self, key) -> "KeepUnknownUndefined":
        return self._child(key)

    def _child(self, part) -> "KeepUnknownUndefined":
        # {{customer.name}} keeps its full dotted path
        path = f"{self._undefined_name}.{part}" if self._undefined_name else str(part)
        return KeepUnknownUndefined(name=path)


def _format_date(value: Optional[Union[date, datetime]]) -> str:
    return value.strftime("%Y-%m-%d") if value else ""


class MessageTemplateRenderer:
    """
    Renders message bodies and resolves per-customer variables.

    Rendering itself is pure; resolve_variables() is the only method that
    reads from the database.
    """

    def __init__(self, config: Optional[ConfigManager] = None):
        self._config = config or ConfigManager()
        self.store_name = self._config.get("store.name", "")
        self.store_phone = self._config.get("store.phone", "")
        self.sms_max_length = self._config.get_int("campaigns.sms_max_length", 160)
        self.env = SandboxedEnvironment(
            undefined=KeepUnknownUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )

    def validate(self, body: Optional[str]) -> None:
        """Reject empty or syntactically broken template bodies."""
        if body is None or not body.strip():
            raise TemplateRenderError("Template body cannot be empty")
        try:
            self.env.parse(body)
        except TemplateSyntaxError as e:
            raise TemplateRenderError(f"Invalid template syntax on line {e.lineno}: {e.message}")

    def render(
        self,
        body: str,
        variables: Dict[str, str],
        channel: Optional[MessageChannel] = None,
    ) -> str:
        """
        Render a template body.

        Args:
            body: Template text with {{token}} placeholders
            variables: Resolved values keyed by token name
            channel: Used only for the SMS length warning

        Raises:
            TemplateRenderError: If the template cannot be parsed or evaluated
        """
        if body is None or not body.strip():
            raise TemplateRenderError("Template body cannot be empty")
        try:
            rendered = self.env.from_string(body).render(**variables)
        except TemplateError as e:
            raise TemplateRenderError(f"Failed to render template: {e}")

        if channel == MessageChannel.SMS and len(rendered) > self.sms_max_length:
            logger.warning(
                f"SMS body rendered to {len(rendered)} chars (exceeds {self.sms_max_length})"
            )
        return rendered

    def default_variables(self) -> Dict[str, str]:
        values = {v["key"]: "" for v in TEMPLATE_VARIABLES}
        values["storeName"] = self.store_name
        values["storePhone"] = self.store_phone
        return values

    def resolve_variables(self, session: Session, customer_id: str) -> Dict[str, str]:
        """
        Build the variable map for one customer.

        Uses the most recent picked-up order, active prescription, active
        insurance policy and exam. Missing data resolves to empty strings.
        """
        variables = self.default_variables()
        customers = CustomerRepository(session)
        customer = customers.get_by_id(customer_id)
        if customer is None:
            logger.warning(f"Resolving template variables for unknown customer {customer_id}")
            return variables

        last_order = customers.latest_picked_up_order(customer_id)
        last_rx = customers.latest_active_prescription(customer_id)
        insurance = customers.latest_active_insurance(customer_id)
        last_exam = customers.latest_exam(customer_id)

        variables.update({
            "firstName": customer.first_name or "",
            "lastName": customer.last_name or "",
            "fullName": f"{customer.first_name or ''} {customer.last_name or ''}".strip(),
            "phone": customer.phone or "",
            "email": customer.email or "",
            "frameBrand": (last_order.frame_brand or "") if last_order else "",
            "frameModel": (last_order.frame_model or "") if last_order else "",
            "orderDate": _format_date(last_order.picked_up_at) if last_order else "",
            "rxExpiryDate": _format_date(last_rx.expiry_date) if last_rx else "",
            "insuranceProvider": (insurance.provider_name or "") if insurance else "",
            "insuranceRenewalMonth": (
                MONTH_NAMES[(insurance.renewal_month - 1) % 12]
                if insurance and insurance.renewal_month else ""
            ),
            "examDate": _format_date(last_exam.exam_date) if last_exam else "",
        })
        return variables
