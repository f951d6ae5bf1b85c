"""Placeholder substitution for customer message templates.

Templates use ``{{ token }}`` placeholders. Substitution is a single pass:
no escaping, no recursion, and unknown tokens render as an empty string.
"""

import re
from collections.abc import Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.db.models import MessageTemplate

PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*([a-zA-Z0-9_]+)\s*\}\}")


def render_template(body: str, variables: Mapping[str, str]) -> str:
    """Replace every placeholder in body with its mapped value or ''.

    Example:
        >>> render_template("Hi {{name}}, code {{code}}", {"name": "Andre", "code": "SHP-AB12CD"})
        'Hi Andre, code SHP-AB12CD'
    """
    return PLACEHOLDER_PATTERN.sub(
        lambda match: str(variables.get(match.group(1)) or ""), body or ""
    )


def build_template_vars(
    customer_name: str,
    tracking_code: str,
    destination: str,
    status: str,
    note: str = "",
    tracking_url: str = "",
) -> dict[str, str]:
    """Build the variable map for a status message.

    Both vocabularies are emitted so templates written against either
    render: ``customer_name``/``name`` and ``tracking_code``/``code``.
    """
    return {
        "customer_name": customer_name or "",
        "tracking_code": tracking_code or "",
        "destination": destination or "",
        "status": status or "",
        "note": note or "",
        "tracking_url": tracking_url or "",
        "name": customer_name or "",
        "code": tracking_code or "",
    }


def find_enabled_template(
    db: Session, org_id: str, status: str
) -> MessageTemplate | None:
    """Return the organization's enabled template for a status, if any."""
    return db.scalars(
        select(MessageTemplate)
        .where(
            MessageTemplate.org_id == org_id,
            MessageTemplate.status == status,
            MessageTemplate.enabled.is_(True),
        )
        .order_by(MessageTemplate.created_at)
        .limit(1)
    ).first()
