"""
Tests for executing a reviewed mapping against the contact store.
"""
import pytest

from contact_importer.domain.contacts.models import (
    UNMAPPED,
    ContactRecord,
    CoreAttribute,
    CoreTarget,
    ExistingCustomTarget,
    MappingEntry,
    MappingResult,
    NewCustomTarget,
)
from contact_importer.domain.imports.errors import FieldMaterializationError, RowValidationError
from contact_importer.domain.imports.executor import ImportExecutor, ValidationPolicy, validate_record


def _mapping(**targets):
    """Build a mapping from header=target keyword arguments."""
    return MappingResult(entries={
        header: MappingEntry(header=header, target=target, confidence=0.9)
        for header, target in targets.items()
    })


def _core(name):
    return CoreTarget(name=CoreAttribute(name))


BASIC_MAPPING = _mapping(
    first=_core("firstName"),
    last=_core("lastName"),
    mail=_core("email"),
    mobile=_core("phone"),
)


def _executor(store, **kwargs):
    kwargs.setdefault("batch_size", 100)
    kwargs.setdefault("validation_policy", ValidationPolicy.EMAIL_OR_PHONE)
    kwargs.setdefault("placeholder_values", ["null", "undefined", "-"])
    return ImportExecutor(store, **kwargs)


def test_distinct_rows_are_created(store):
    rows = [
        {"first": "Ana", "last": "Silva", "mail": "ana@x.com", "mobile": ""},
        {"first": "Ben", "last": "Cole", "mail": "", "mobile": "555-0101"},
        {"first": "Cy", "last": "Ng", "mail": "cy@x.com", "mobile": "555-0102"},
    ]

    report = _executor(store).execute(rows, BASIC_MAPPING, {})

    stats = report.stats
    assert (stats.total, stats.created, stats.merged, stats.errors, stats.skipped) == (3, 3, 0, 0, 0)
    contacts = store.list_contacts()
    assert sorted(c.email or c.phone for c in contacts) == ["555-0101", "ana@x.com", "cy@x.com"]


def test_email_match_merges_and_keeps_other_attributes(store):
    existing = store.create_contact(ContactRecord(
        first_name="Old", last_name="Name", email="ana@x.com", phone="555-0000",
    ))
    mapping = _mapping(first=_core("firstName"), mail=_core("email"))

    report = _executor(store).execute([{"first": "Ana", "mail": "ana@x.com"}], mapping, {})

    assert report.stats.merged == 1
    assert report.stats.created == 0
    merged = store.get_contact(existing.id)
    assert merged.first_name == "Ana"
    assert merged.last_name == "Name"
    assert merged.phone == "555-0000"
    assert len(store.list_contacts()) == 1


def test_phone_match_is_used_when_email_does_not_match(store):
    existing = store.create_contact(ContactRecord(first_name="Ben", phone="555-0101"))

    report = _executor(store).execute(
        [{"first": "Benjamin", "last": "", "mail": "ben@x.com", "mobile": "555-0101"}],
        BASIC_MAPPING,
        {},
    )

    assert report.stats.merged == 1
    merged = store.get_contact(existing.id)
    assert merged.first_name == "Benjamin"
    assert merged.email == "ben@x.com"


def test_email_match_takes_precedence_over_phone(store):
    by_email = store.create_contact(ContactRecord(email="ana@x.com"))
    by_phone = store.create_contact(ContactRecord(phone="555-0101"))

    _executor(store).execute(
        [{"first": "Ana", "last": "", "mail": "ana@x.com", "mobile": "555-0101"}],
        BASIC_MAPPING,
        {},
    )

    assert store.get_contact(by_email.id).first_name == "Ana"
    assert store.get_contact(by_phone.id).first_name is None


def test_row_without_email_or_phone_is_rejected(store):
    rows = [
        {"first": "No", "last": "Channel", "mail": "", "mobile": ""},
        {"first": "Has", "last": "Mail", "mail": "has@x.com", "mobile": ""},
    ]

    report = _executor(store).execute(rows, BASIC_MAPPING, {})

    assert report.stats.errors == 1
    assert report.stats.created == 1
    assert report.row_errors[0].record_number == 1
    assert "neither an email nor a phone" in report.row_errors[0].message
    assert len(store.list_contacts()) == 1


def test_all_core_policy_requires_every_core_attribute(store):
    rows = [
        {"first": "Ana", "last": "", "mail": "ana@x.com", "mobile": "555-0100"},
        {"first": "Ben", "last": "Cole", "mail": "ben@x.com", "mobile": "555-0101"},
    ]

    report = _executor(store, validation_policy=ValidationPolicy.ALL_CORE).execute(rows, BASIC_MAPPING, {})

    assert report.stats.created == 1
    assert report.stats.errors == 1
    assert "lastName" in report.row_errors[0].message


def test_validate_record_policies():
    validate_record(ContactRecord(phone="555"), ValidationPolicy.EMAIL_OR_PHONE)

    with pytest.raises(RowValidationError):
        validate_record(ContactRecord(first_name="Ana"), ValidationPolicy.EMAIL_OR_PHONE)
    with pytest.raises(RowValidationError, match="firstName, lastName"):
        validate_record(ContactRecord(email="a@x.com", phone="555"), ValidationPolicy.ALL_CORE)


def test_new_field_is_created_once_and_values_stored(store):
    mapping = _mapping(
        name=_core("firstName"),
        email=_core("email"),
        company=NewCustomTarget(label="CompanyName"),
    )
    rows = [
        {"name": "Ana", "email": "ana@x.com", "company": "Acme"},
        {"name": "Ben", "email": "ben@x.com", "company": "Globex"},
    ]

    report = _executor(store).execute(rows, mapping, {})

    assert [field.label for field in report.created_fields] == ["CompanyName"]
    fields = store.list_fields()
    assert len(fields) == 1
    field_id = fields[0].id
    companies = sorted(contact.custom[field_id] for contact in store.list_contacts())
    assert companies == ["Acme", "Globex"]


def test_identical_new_labels_collapse_into_one_field(store):
    mapping = _mapping(
        email=_core("email"),
        org=NewCustomTarget(label="Company"),
        employer=NewCustomTarget(label=" company"),
    )

    report = _executor(store).execute([{"email": "a@x.com", "org": "", "employer": "Initech"}], mapping, {})

    assert len(report.created_fields) == 1
    field_id = report.created_fields[0].id
    assert store.list_contacts()[0].custom == {field_id: "Initech"}


def test_new_label_matching_existing_field_reuses_it(store):
    existing = store.create_field("Company")
    mapping = _mapping(email=_core("email"), org=NewCustomTarget(label="COMPANY"))

    report = _executor(store).execute([{"email": "a@x.com", "org": "Acme"}], mapping, {})

    assert report.created_fields == []
    assert len(store.list_fields()) == 1
    assert store.list_contacts()[0].custom == {existing.id: "Acme"}


def test_new_label_naming_core_attribute_maps_to_core(store):
    mapping = _mapping(email=_core("email"), surname=NewCustomTarget(label="Last Name"))

    report = _executor(store).execute([{"email": "a@x.com", "surname": "Silva"}], mapping, {})

    assert report.created_fields == []
    assert store.list_fields() == []
    assert store.list_contacts()[0].last_name == "Silva"


def test_materialize_fields_rewrites_mapping(store):
    mapping = _mapping(email=_core("email"), city=NewCustomTarget(label="City"))

    rewritten, created = _executor(store).materialize_fields(mapping)

    assert rewritten.entries["city"].target == ExistingCustomTarget(field_id=created[0].id)
    assert rewritten.entries["email"] == mapping.entries["email"]


def test_field_creation_failure_aborts_before_any_row(store, monkeypatch):
    def fail_create_field(label, field_type=None):
        raise RuntimeError("permission denied")

    monkeypatch.setattr(store, "create_field", fail_create_field)
    mapping = _mapping(email=_core("email"), org=NewCustomTarget(label="Company"))

    with pytest.raises(FieldMaterializationError) as exc_info:
        _executor(store).execute([{"email": "a@x.com", "org": "Acme"}], mapping, {})

    assert exc_info.value.label == "Company"
    assert store.list_contacts() == []


def test_agent_email_resolves_to_user_id(store):
    agent_id = store.create_agent("Dana", "dana@agency.com")
    mapping = _mapping(email=_core("email"), owner=_core("agentUid"))
    rows = [
        {"email": "a@x.com", "owner": "dana@agency.com"},
        {"email": "b@x.com", "owner": "nobody@agency.com"},
    ]

    report = _executor(store).execute(rows, mapping, store.agent_directory())

    assert report.stats.created == 2
    owners = {contact.email: contact.agent_uid for contact in store.list_contacts()}
    assert owners == {"a@x.com": agent_id, "b@x.com": None}


def test_placeholders_and_blanks_are_ignored(store):
    existing = store.create_contact(ContactRecord(first_name="Ana", last_name="Silva", email="ana@x.com"))
    rows = [{"first": "NULL", "last": " - ", "mail": "ana@x.com", "mobile": "undefined"}]

    report = _executor(store).execute(rows, BASIC_MAPPING, {})

    assert report.stats.merged == 1
    contact = store.get_contact(existing.id)
    assert (contact.first_name, contact.last_name, contact.phone) == ("Ana", "Silva", None)


def test_values_are_stored_untrimmed_and_matched_exactly(store):
    existing = store.create_contact(ContactRecord(email="ana@x.com "))
    mapping = _mapping(first=_core("firstName"), mail=_core("email"))

    report = _executor(store).execute(
        [
            {"first": " Ana ", "mail": "ana@x.com "},
            {"first": "Other", "mail": "ana@x.com"},
        ],
        mapping,
        {},
    )

    assert (report.stats.created, report.stats.merged) == (1, 1)
    merged = store.get_contact(existing.id)
    assert merged.first_name == " Ana "
    assert merged.email == "ana@x.com "
    assert sorted(contact.email for contact in store.list_contacts()) == ["ana@x.com", "ana@x.com "]


def test_agent_lookup_trims_the_email(store):
    agent_id = store.create_agent("Dana", "dana@agency.com")
    mapping = _mapping(email=_core("email"), owner=_core("agentUid"))

    _executor(store).execute([{"email": "a@x.com", "owner": " dana@agency.com "}], mapping, store.agent_directory())

    assert store.list_contacts()[0].agent_uid == agent_id


def test_first_non_blank_value_wins_for_shared_target(store):
    mapping = _mapping(
        email=_core("email"),
        mobile=_core("phone"),
        work=_core("phone"),
    )
    rows = [
        {"email": "a@x.com", "mobile": "", "work": "555-0200"},
        {"email": "b@x.com", "mobile": "555-0300", "work": "555-0400"},
    ]

    _executor(store).execute(rows, mapping, {})

    phones = {contact.email: contact.phone for contact in store.list_contacts()}
    assert phones == {"a@x.com": "555-0200", "b@x.com": "555-0300"}


def test_unmapped_headers_are_not_imported(store):
    mapping = _mapping(email=_core("email"), order=UNMAPPED)

    _executor(store).execute([{"email": "a@x.com", "order": "ORD-1"}], mapping, {})

    contact = store.list_contacts()[0]
    assert contact.custom == {}
    assert "ORD-1" not in contact.to_attributes().values()


def test_duplicates_within_one_file_become_merges(store):
    rows = [
        {"first": "Ana", "last": "", "mail": "ana@x.com", "mobile": ""},
        {"first": "", "last": "Silva", "mail": "ana@x.com", "mobile": "555-0100"},
    ]

    report = _executor(store).execute(rows, BASIC_MAPPING, {})

    assert (report.stats.created, report.stats.merged) == (1, 1)
    [contact] = store.list_contacts()
    assert (contact.first_name, contact.last_name, contact.phone) == ("Ana", "Silva", "555-0100")


def test_row_with_no_usable_values_is_skipped(store):
    rows = [{"first": "", "last": "null", "mail": "", "mobile": ""}]

    report = _executor(store).execute(rows, BASIC_MAPPING, {})

    assert report.stats.skipped == 1
    assert report.stats.errors == 0
    assert store.list_contacts() == []


def test_store_failure_on_one_row_does_not_stop_import(store, monkeypatch):
    original_create = store.create_contact

    def flaky_create(record):
        if record.email == "bad@x.com":
            raise RuntimeError("write rejected")
        return original_create(record)

    monkeypatch.setattr(store, "create_contact", flaky_create)
    rows = [
        {"first": "A", "last": "", "mail": "a@x.com", "mobile": ""},
        {"first": "B", "last": "", "mail": "bad@x.com", "mobile": ""},
        {"first": "C", "last": "", "mail": "c@x.com", "mobile": ""},
    ]

    report = _executor(store).execute(rows, BASIC_MAPPING, {})

    assert (report.stats.created, report.stats.errors) == (2, 1)
    assert report.row_errors[0].record_number == 2
    assert report.row_errors[0].message == "write rejected"


def test_row_error_details_are_capped(store):
    rows = [{"first": f"Nobody {i}", "last": "", "mail": "", "mobile": ""} for i in range(5)]

    report = _executor(store, row_error_limit=2).execute(rows, BASIC_MAPPING, {})

    assert report.stats.errors == 5
    assert len(report.row_errors) == 2


def test_progress_is_reported_per_chunk(store):
    rows = [{"first": "", "last": "", "mail": f"user{i}@x.com", "mobile": ""} for i in range(5)]
    calls = []

    report = _executor(store, batch_size=2).execute(
        rows, BASIC_MAPPING, {}, progress=lambda done, total: calls.append((done, total)),
    )

    assert calls == [(2, 5), (4, 5), (5, 5)]
    assert report.stats.created == 5


def test_empty_row_list_returns_zero_stats(store):
    report = _executor(store).execute([], BASIC_MAPPING, {})

    assert report.stats.total == 0
    assert report.stats.created == 0
    assert report.row_errors == []
