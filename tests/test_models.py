from datetime import datetime, timedelta, timezone

import pytest

from mailbox_offboard.models import (
    AuditRecord,
    ExecutionLog,
    LogEntry,
    OffboardingRequest,
    OofTemplate,
    RequestValidationError,
    Severity,
    add_months,
    parse_delegates,
)

from conftest import NOW


def test_delegates_split_and_trimmed(make_request):
    request = make_request(additional_delegates="a@x.com, b@x.com")

    assert request.delegates == ("mgr@acme.com", "a@x.com", "b@x.com")


def test_empty_delegates_leave_only_target(make_request):
    assert make_request(additional_delegates="").delegates == ("mgr@acme.com",)


def test_duplicate_delegates_are_kept():
    assert parse_delegates("a@x.com,a@x.com") == ("a@x.com", "a@x.com")


def test_parse_delegates_accepts_sequences_and_drops_blanks():
    assert parse_delegates([" a@x.com ", "", None, "b@x.com"]) == ("a@x.com", "b@x.com")
    assert parse_delegates("a@x.com,, ,b@x.com") == ("a@x.com", "b@x.com")
    assert parse_delegates(None) == ()


def test_default_end_date_is_three_months_out(make_request):
    request = make_request(oof_end_date=None)

    assert request.oof_end_date == datetime(2027, 1, 19, 9, 30, tzinfo=timezone.utc)


def test_add_months_clamps_to_month_end():
    assert add_months(datetime(2026, 11, 30), 3) == datetime(2027, 2, 28)
    assert add_months(datetime(2026, 1, 31), 1) == datetime(2026, 2, 28)


def test_naive_and_iso_end_dates_are_utc(make_request):
    request = make_request(oof_end_date="2027-03-01T12:00:00")

    assert request.oof_end_date == datetime(2027, 3, 1, 12, tzinfo=timezone.utc)


@pytest.mark.parametrize("end", [NOW, NOW - timedelta(days=1)])
def test_end_date_must_be_in_the_future(make_request, end):
    with pytest.raises(RequestValidationError, match="future"):
        make_request(oof_end_date=end)


@pytest.mark.parametrize(
    "field, value",
    [
        ("ticket_ref", "  "),
        ("source_user", "jdoe"),
        ("target_user", "manager"),
        ("target_user", "mgr.acme.com"),
        ("target_user", "mgr@acme.com\u2019; Remove-Mailbox -Identity ceo@acme.com; \u2019"),
        ("target_user", "mgr@acme.com'; Get-Mailbox"),
        ("source_user", "j doe@acme.com"),
        ("additional_delegates", "a@x.com, b@x.com\u2018"),
        ("additional_delegates", "not-an-address"),
        ("notification_email", "not-an-address"),
        ("proof_link", "ftp://files/approval.pdf"),
        ("proof_link", "approval.pdf"),
        ("oof_template", "Vacation"),
        ("audit_store_name", ""),
    ],
)
def test_invalid_fields_are_rejected(make_request, field, value):
    with pytest.raises(RequestValidationError):
        make_request(**{field: value})


def test_proof_link_is_optional(make_request):
    assert make_request(proof_link="").proof_link is None


def test_template_and_booleans_parsed_from_strings(make_request):
    request = make_request(oof_template="longleave", grant_send_as="yes", convert_to_shared="false")

    assert request.oof_template is OofTemplate.LONG_LEAVE
    assert request.grant_send_as is True
    assert request.convert_to_shared is False


def test_request_is_immutable(make_request):
    request = make_request()

    with pytest.raises(AttributeError):
        request.target_user = "other@acme.com"


def test_audit_record_keys(make_request):
    record = AuditRecord.from_request(make_request())

    assert record.partition_key == "acme.com"
    assert record.row_key == "jdoe_acme.com"
    assert record.user_email == "jdoe@acme.com"
    assert record.action == "DisableForwarding"
    assert record.status == "Active"


def test_audit_entity_shape(make_request):
    entity = AuditRecord.from_request(make_request(proof_link=None)).to_entity()

    assert entity["PartitionKey"] == "acme.com"
    assert entity["RowKey"] == "jdoe_acme.com"
    assert entity["expiryDate"] == "2027-01-17T09:30:00Z"
    assert entity["expiryDate@odata.type"] == "Edm.DateTime"
    assert entity["ticketRef"] == "CHG0012345"
    assert entity["proofLink"] == ""


def test_same_request_builds_equal_records(make_request):
    assert AuditRecord.from_request(make_request()) == AuditRecord.from_request(make_request())


def test_execution_log_is_append_only_view():
    log = ExecutionLog()
    log.append(LogEntry(NOW, Severity.INFO, "started"))

    entries = log.entries
    log.append(LogEntry(NOW, Severity.SUCCESS, "done"))

    assert len(entries) == 1
    assert len(log) == 2
    assert log.lines()[1] == "[2026-10-19 09:30:00] [Success] done"


@pytest.mark.parametrize(
    "missing",
    ["convert_to_shared", "keep_copy_on_forward", "grant_full_access", "grant_send_as", "oof_template"],
)
def test_flags_and_template_are_required(make_request, missing):
    with pytest.raises(RequestValidationError, match=missing):
        make_request(**{missing: None})


def test_explicit_false_flags_are_accepted(make_request):
    request = make_request(convert_to_shared=False, grant_full_access=False)

    assert request.convert_to_shared is False
    assert request.grant_full_access is False
