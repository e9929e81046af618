"""Item helpers: alias writing, alias reading, ordering, redaction."""

from datetime import datetime, timezone

from tenantvault.credentials.items import (
    camel,
    item_secret,
    matches_filters,
    newest_first,
    record_from_item,
    redact_item,
    to_item,
)
from tenantvault.types import CloudClass, CredentialRecord, TenantContext


def test_camel():
    assert camel("remote_account_id") == "remoteAccountId"
    assert camel("scope") == "scope"


def test_to_item_writes_both_spellings_and_skips_absent():
    record = CredentialRecord(
        id="r1",
        context=TenantContext(account_id="A1"),
        encrypted_secret="{}",
        cloud_class=CloudClass.PRIVATE,
        created_at=datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
    )
    item = to_item(record, "VAULT#ACC#A1", "TOKEN#r1")
    assert item["accountId"] == item["account_id"] == "A1"
    assert item["cloudClass"] == "private"
    assert item["createdAt"] == "2024-05-01T10:00:00.000Z"
    assert "enterprise_id" not in item and "enterpriseId" not in item


def test_item_secret_prefers_current_name():
    assert item_secret({"encryptedSecret": "new", "accessToken": "old"}) == "new"
    assert item_secret({"access_token": "old"}) == "old"
    assert item_secret({}) is None


def test_matches_filters_reads_camel_case():
    item = {"accountId": "A1", "enterpriseId": "E1"}
    assert matches_filters(item, {"account_id": "A1"})
    assert not matches_filters(item, {"account_id": "A1", "product": "P1"})
    assert matches_filters(item, {})


def test_newest_first_handles_missing_timestamps():
    items = [
        {"id": "old", "created_at": "2023-01-01T00:00:00.000Z"},
        {"id": "none"},
        {"id": "new", "createdAt": "2024-01-01T00:00:00.000Z"},
    ]
    assert [i["id"] for i in newest_first(items)] == ["new", "old", "none"]


def test_record_from_item_is_redacted():
    record = record_from_item({
        "id": "r1",
        "accountId": "A1",
        "encrypted_secret": "ciphertext",
        "cloud_class": "unknown",
        "created_at": "2024-05-01T10:00:00.000Z",
    })
    assert record.encrypted_secret == ""
    assert record.context.account_id == "A1"
    assert record.cloud_class == CloudClass.PUBLIC
    assert record.updated_at == record.created_at


def test_redact_item():
    redacted = redact_item({"id": "r1", "encryptedSecret": "x", "access_token": "y", "scope": "repo"})
    assert redacted == {"id": "r1", "encryptedSecret": "***", "access_token": "***", "scope": "repo"}
