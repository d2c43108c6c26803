"""
Tests for the entity model, pages and key validation.
"""

from datetime import UTC, datetime

import pytest
from pydantic import Field

from src.exceptions import InvalidArgumentError
from src.tables.entity import OperationKind, Page, TableEntityBase, validate_key


class Comment(TableEntityBase):
    """Test entity with an aliased property."""

    body: str = ""
    owner_id: str = Field(default="", alias="OwnerId")


class TestTableEntityBase:
    """Tests for TableEntityBase."""

    def test_to_record_uses_storage_names(self):
        comment = Comment(partition_key="p", row_key="r", body="hi", owner_id="u1")
        assert comment.to_record() == {
            "PartitionKey": "p",
            "RowKey": "r",
            "body": "hi",
            "OwnerId": "u1",
        }

    def test_to_record_excludes_service_fields(self):
        comment = Comment(partition_key="p", row_key="r", timestamp=datetime.now(UTC), etag="x")
        record = comment.to_record()
        assert "Timestamp" not in record
        assert "ETag" not in record

    def test_from_record(self):
        ts = datetime(2024, 1, 1, tzinfo=UTC)
        comment = Comment.from_record(
            {
                "PartitionKey": "p",
                "RowKey": "r",
                "OwnerId": "u1",
                "Timestamp": ts,
                "ETag": 'W/"1"',
                "Likes": 3,
            }
        )
        assert comment.owner_id == "u1"
        assert comment.timestamp == ts
        assert comment.etag == 'W/"1"'
        assert comment.model_extra == {"Likes": 3}

    def test_storage_name(self):
        assert Comment.storage_name("partition_key") == "PartitionKey"
        assert Comment.storage_name("owner_id") == "OwnerId"
        assert Comment.storage_name("body") == "body"
        assert Comment.storage_name("Unknown") == "Unknown"

    def test_defaults_have_empty_keys(self):
        comment = Comment()
        assert comment.partition_key == ""
        assert comment.row_key == ""


class TestPage:
    """Tests for Page."""

    def test_empty_token_normalized(self):
        assert Page([1], "").continuation_token is None
        assert not Page([1], "").has_more

    def test_iteration_and_length(self):
        page = Page([1, 2, 3], "next")
        assert list(page) == [1, 2, 3]
        assert len(page) == 3
        assert page.has_more


class TestValidateKey:
    """Tests for key validation."""

    @pytest.mark.parametrize("value", [None, "", "   ", "a/b", "a\\b", "a#b", "a?b", "a\tb", "x" * 1025])
    def test_invalid(self, value):
        with pytest.raises(InvalidArgumentError):
            validate_key("RowKey", value)

    @pytest.mark.parametrize("value", ["abc", "2516981900999999999", "01HQ3Z", "ü" * 512])
    def test_valid(self, value):
        assert validate_key("RowKey", value) == value


def test_operation_kind_values():
    assert OperationKind("upsert_replace") is OperationKind.UPSERT_REPLACE
    assert [kind.value for kind in OperationKind] == [
        "add",
        "update_merge",
        "update_replace",
        "upsert_merge",
        "upsert_replace",
        "delete",
    ]
