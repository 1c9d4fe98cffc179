"""Beneficiaries, executors and trusted contacts owned by a user."""

import logging
from uuid import UUID

from sqlalchemy import case
from sqlalchemy.orm import Session

from willtank.db.enums import ContactType
from willtank.db.models import Contact

logger = logging.getLogger(__name__)

# Distribution order: beneficiaries, executors, trusted contacts
_TYPE_ORDER = {
    ContactType.BENEFICIARY.value: 0,
    ContactType.EXECUTOR.value: 1,
    ContactType.TRUSTED.value: 2,
}


class ContactNotFoundError(Exception):
    pass


def create_contact(
    db: Session,
    user_id: UUID,
    contact_type: ContactType,
    name: str,
    email: str | None = None,
    phone: str | None = None,
    relationship: str | None = None,
    is_primary: bool = False,
) -> Contact:
    if is_primary and contact_type == ContactType.EXECUTOR:
        # Only one primary executor per user
        (
            db.query(Contact)
            .filter(
                Contact.user_id == user_id,
                Contact.contact_type == ContactType.EXECUTOR.value,
                Contact.is_primary.is_(True),
            )
            .update({Contact.is_primary: False}, synchronize_session="fetch")
        )
    contact = Contact(
        user_id=user_id,
        contact_type=contact_type.value,
        name=name.strip(),
        email=email.strip().lower() if email else None,
        phone=phone,
        relationship_label=relationship,
        is_primary=is_primary and contact_type == ContactType.EXECUTOR,
    )
    db.add(contact)
    db.commit()
    db.refresh(contact)
    return contact


def list_contacts(
    db: Session,
    user_id: UUID,
    contact_type: ContactType | None = None,
) -> list[Contact]:
    query = db.query(Contact).filter(Contact.user_id == user_id)
    if contact_type:
        query = query.filter(Contact.contact_type == contact_type.value)
    return query.order_by(Contact.created_at, Contact.name).all()


def list_contacts_for_distribution(db: Session, user_id: UUID) -> list[Contact]:
    """All PIN recipients in distribution order (stable within each type)."""
    type_rank = case(_TYPE_ORDER, value=Contact.contact_type, else_=3)
    return (
        db.query(Contact)
        .filter(
            Contact.user_id == user_id,
            Contact.contact_type.in_(list(_TYPE_ORDER)),
        )
        .order_by(type_rank, Contact.is_primary.desc(), Contact.created_at, Contact.id)
        .all()
    )


def get_primary_executor(db: Session, user_id: UUID) -> Contact | None:
    return (
        db.query(Contact)
        .filter(
            Contact.user_id == user_id,
            Contact.contact_type == ContactType.EXECUTOR.value,
        )
        .order_by(Contact.is_primary.desc(), Contact.created_at)
        .first()
    )


def delete_contact(db: Session, user_id: UUID, contact_id: UUID) -> None:
    contact = (
        db.query(Contact)
        .filter(Contact.id == contact_id, Contact.user_id == user_id)
        .first()
    )
    if not contact:
        raise ContactNotFoundError("Contact not found")
    db.delete(contact)
    db.commit()
