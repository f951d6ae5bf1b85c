"""Service for customer lookup and upsert by phone.

Customers are keyed by (org_id, phone); a repeat sender is the same
customer, and their name is refreshed from the latest intake.

Example:
    svc = CustomerService(db)
    customer = svc.upsert_by_phone(org_id, phone="+447900000000", name="Andre Brown")
    db.commit()
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.db.models import Customer, utc_now_iso
from src.errors.domain import NotFoundError
from src.utils.redaction import mask_phone

logger = logging.getLogger(__name__)


class CustomerService:
    """Customer persistence operations.

    Methods do NOT call db.commit(), the caller is responsible for
    committing. ``upsert_by_phone`` flushes, so a concurrent insert of the
    same phone surfaces as IntegrityError at the call site, where the
    caller rolls back and upserts again to land on the winner's row.
    """

    def __init__(self, db: Session) -> None:
        """Initialize with a SQLAlchemy session.

        Args:
            db: Active database session.
        """
        self.db = db

    def get_by_phone(self, org_id: str, phone: str) -> Customer | None:
        """Return the organization's customer for a phone, if any."""
        return self.db.scalars(
            select(Customer).where(Customer.org_id == org_id, Customer.phone == phone)
        ).first()

    def get_customer(self, org_id: str, customer_id: str) -> Customer:
        """Return a customer by id.

        Raises:
            NotFoundError: If no such customer exists in the organization.
        """
        customer = self.db.get(Customer, customer_id)
        if customer is None or customer.org_id != org_id:
            raise NotFoundError("Customer", customer_id)
        return customer

    def upsert_by_phone(self, org_id: str, phone: str, name: str) -> Customer:
        """Update the name of the customer with this phone, or create one.

        Args:
            org_id: Owning organization.
            phone: Natural key within the organization.
            name: Display name from the latest intake.

        Returns:
            The flushed Customer row.
        """
        customer = self.get_by_phone(org_id, phone)
        if customer is not None:
            if customer.name != name:
                customer.name = name
                customer.updated_at = utc_now_iso()
            self.db.flush()
            return customer

        customer = Customer(org_id=org_id, phone=phone, name=name)
        self.db.add(customer)
        self.db.flush()
        logger.info("Created customer %s for %s", customer.id, mask_phone(phone))
        return customer
