"""Organization membership lookup for authenticated callers."""

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.db.models import OrgMember


def get_org_id_for_user(db: Session, user_id: str) -> str | None:
    """Return the caller's organization id, or None without a membership.

    Users belong to a single organization in practice; when several rows
    exist the earliest membership wins so the choice is stable.
    """
    return db.scalars(
        select(OrgMember.org_id)
        .where(OrgMember.user_id == user_id)
        .order_by(OrgMember.created_at)
        .limit(1)
    ).first()


def add_member(db: Session, org_id: str, user_id: str, role: str = "staff") -> OrgMember:
    """Add a user to an organization. The caller commits."""
    member = OrgMember(org_id=org_id, user_id=user_id, role=role)
    db.add(member)
    db.flush()
    return member
