"""
Contact store operations used by the import pipeline.

Each operation runs in its own transaction; single-record atomicity is the
only consistency guarantee. There is no transaction spanning a duplicate
lookup and the following write.
"""
import logging
from typing import Dict, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from contact_importer.domain.contacts.models import (
    CoreAttribute,
    ContactRecord,
    CustomFieldDef,
    FieldType,
)
from .models import Contact, ContactField, User
from .session import Base, get_engine, get_session_local

logger = logging.getLogger(__name__)

# Core attribute -> contacts column
_CORE_COLUMNS = {
    CoreAttribute.FIRST_NAME: "first_name",
    CoreAttribute.LAST_NAME: "last_name",
    CoreAttribute.PHONE: "phone",
    CoreAttribute.EMAIL: "email",
    CoreAttribute.AGENT_UID: "agent_uid",
}

LOOKUP_ATTRIBUTES = (CoreAttribute.EMAIL, CoreAttribute.PHONE)


def init_tables(engine=None) -> None:
    """Create the contact store tables if they do not exist."""
    engine = engine or get_engine()
    Base.metadata.create_all(engine)
    logger.info("contacts, contact_fields and users tables ready")


def _to_record(contact: Contact) -> ContactRecord:
    return ContactRecord(
        id=contact.id,
        first_name=contact.first_name,
        last_name=contact.last_name,
        phone=contact.phone,
        email=contact.email,
        agent_uid=contact.agent_uid,
        custom=dict(contact.custom or {}),
    )


def _to_field(field: ContactField) -> CustomFieldDef:
    return CustomFieldDef(id=field.id, label=field.label, type=FieldType(field.type), core=bool(field.core))


class ContactStore:
    """Reads and writes contacts, custom field definitions and agents."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _session(self) -> Session:
        return self._session_factory()

    # Custom fields -------------------------------------------------------

    def list_fields(self) -> List[CustomFieldDef]:
        with self._session() as session:
            fields = (
                session.query(ContactField)
                .filter(ContactField.core.is_(False))
                .order_by(ContactField.created_at, ContactField.id)
                .all()
            )
            return [_to_field(field) for field in fields]

    def create_field(self, label: str, field_type: FieldType = FieldType.TEXT) -> CustomFieldDef:
        with self._session() as session, session.begin():
            field = ContactField(label=label, type=field_type.value, core=False)
            session.add(field)
            session.flush()
            created = _to_field(field)
        logger.info("Created custom field '%s' with id %s", created.label, created.id)
        return created

    # Contacts ------------------------------------------------------------

    def find_contact(self, attribute: CoreAttribute, value: str) -> Optional[ContactRecord]:
        """Exact-match lookup on email or phone; the oldest match wins."""
        if attribute not in LOOKUP_ATTRIBUTES:
            raise ValueError(f"Contacts can only be looked up by email or phone, not {attribute.value}")
        column = getattr(Contact, _CORE_COLUMNS[attribute])
        with self._session() as session:
            contact = (
                session.query(Contact)
                .filter(column == value)
                .order_by(Contact.created_at, Contact.id)
                .first()
            )
            return _to_record(contact) if contact else None

    def get_contact(self, contact_id: str) -> Optional[ContactRecord]:
        with self._session() as session:
            contact = session.get(Contact, contact_id)
            return _to_record(contact) if contact else None

    def list_contacts(self) -> List[ContactRecord]:
        with self._session() as session:
            contacts = session.query(Contact).order_by(Contact.created_at, Contact.id).all()
            return [_to_record(contact) for contact in contacts]

    def create_contact(self, record: ContactRecord) -> ContactRecord:
        with self._session() as session, session.begin():
            contact = Contact(custom=dict(record.custom))
            for attribute, column in _CORE_COLUMNS.items():
                setattr(contact, column, record.get(attribute))
            session.add(contact)
            session.flush()
            return _to_record(contact)

    def merge_contact(self, contact_id: str, record: ContactRecord) -> ContactRecord:
        """
        Shallow-merge ``record`` onto an existing contact.

        Attributes present in ``record`` overwrite; everything else on the
        stored contact is left untouched.
        """
        with self._session() as session, session.begin():
            contact = session.get(Contact, contact_id)
            if contact is None:
                raise LookupError(f"Contact {contact_id} no longer exists")
            for attribute, column in _CORE_COLUMNS.items():
                value = record.get(attribute)
                if value is not None:
                    setattr(contact, column, value)
            if record.custom:
                # Reassign so the JSON column registers the change.
                contact.custom = {**(contact.custom or {}), **record.custom}
            session.flush()
            return _to_record(contact)

    # Agents --------------------------------------------------------------

    def create_agent(self, name: Optional[str], email: str) -> str:
        with self._session() as session, session.begin():
            user = User(name=name, email=email)
            session.add(user)
            session.flush()
            return user.id

    def list_agents(self) -> List[Dict[str, Optional[str]]]:
        with self._session() as session:
            users = session.query(User).order_by(User.created_at, User.id).all()
            return [{"id": user.id, "name": user.name, "email": user.email} for user in users]

    def agent_directory(self) -> Dict[str, str]:
        """Map of agent email -> user id, used to resolve agentUid values."""
        return {agent["email"]: agent["id"] for agent in self.list_agents() if agent["email"]}


def get_store() -> ContactStore:
    return ContactStore(get_session_local())
