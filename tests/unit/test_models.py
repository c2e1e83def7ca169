"""Tests for core models."""

import pytest

from sharded_counters.exceptions import InvalidDefinitionError, ValidationError
from sharded_counters.models import (
    CounterDefinition,
    Document,
    DocumentRef,
    RollupResult,
    current_tick,
    is_numeric,
    staleness_window,
)


class TestDocumentRef:
    """Tests for DocumentRef."""

    def test_top_level_path(self):
        assert DocumentRef("posts", "p1").path == "posts/p1"

    def test_child_path(self):
        ref = DocumentRef("posts", "p1").child("likes", "3")
        assert ref.path == "posts/p1/likes/3"
        assert ref.parent == DocumentRef("posts", "p1")

    def test_from_path_round_trip(self):
        ref = DocumentRef.from_path("posts/p1/likes/3")
        assert ref == DocumentRef("posts", "p1").child("likes", "3")

    @pytest.mark.parametrize("path", ["", "posts", "posts/p1/likes"])
    def test_from_path_rejects_collection_paths(self, path):
        with pytest.raises(ValueError):
            DocumentRef.from_path(path)

    def test_rejects_slash_in_id(self):
        with pytest.raises(ValueError):
            DocumentRef("posts", "a/b")

    def test_rejects_empty_collection(self):
        with pytest.raises(ValueError):
            DocumentRef("", "p1")

    def test_str_is_path(self):
        assert str(DocumentRef("posts", "p1")) == "posts/p1"


class TestDocument:
    """Tests for Document accessors."""

    def test_reserved_accessors(self):
        doc = Document(
            ref=DocumentRef("posts", "p1").child("likes", "0"),
            fields={"count": 3, "did": "posts/p1", "ct": 101},
        )
        assert doc.parent_path == "posts/p1"
        assert doc.creation_tick == 101

    def test_missing_reserved_fields(self):
        doc = Document(ref=DocumentRef("posts", "p1"), fields={"count": 3})
        assert doc.parent_path is None
        assert doc.creation_tick is None


class TestTicks:
    """Tests for tick helpers."""

    def test_current_tick_floors(self):
        assert current_tick(6059.9, 60) == 100
        assert current_tick(6060, 60) == 101

    def test_current_tick_fractional_interval(self):
        assert current_tick(10.0, 2.5) == 4

    def test_staleness_window_is_ten_trailing_ticks(self):
        assert staleness_window(100) == [100, 99, 98, 97, 96, 95, 94, 93, 92, 91]

    @pytest.mark.parametrize(
        "value,expected",
        [(1, True), (1.5, True), (-3, True), (True, False), ("1", False), (None, False)],
    )
    def test_is_numeric(self, value, expected):
        assert is_numeric(value) is expected


class TestCounterDefinition:
    """Tests for CounterDefinition validation."""

    def test_valid_definition(self):
        definition = CounterDefinition("likes", 4, {"count": 0}, 60)
        assert definition.tick(6000) == 100
        assert definition.shard_ids() == ["0", "1", "2", "3"]

    def test_defaults(self):
        definition = CounterDefinition(name="views", shard_count=2)
        assert definition.default_shard_template == {}
        assert definition.rollup_interval == 60

    @pytest.mark.parametrize("reserved", ["did", "ct"])
    def test_template_with_reserved_field_rejected(self, reserved):
        with pytest.raises(InvalidDefinitionError) as exc_info:
            CounterDefinition("likes", 4, {"count": 0, reserved: 1}, 60)
        assert exc_info.value.field == "default_shard_template"

    def test_zero_shards_rejected(self):
        with pytest.raises(InvalidDefinitionError):
            CounterDefinition("likes", 0)

    @pytest.mark.parametrize("interval", [0, -1])
    def test_non_positive_interval_rejected(self, interval):
        with pytest.raises(InvalidDefinitionError):
            CounterDefinition("likes", 4, rollup_interval=interval)

    @pytest.mark.parametrize("name", ["", "a/b"])
    def test_invalid_name_rejected(self, name):
        with pytest.raises(InvalidDefinitionError):
            CounterDefinition(name, 4)

    def test_definition_errors_are_value_errors(self):
        with pytest.raises(ValueError):
            CounterDefinition("likes", 0)
        assert issubclass(InvalidDefinitionError, ValidationError)

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("COUNTER_NAME", "likes")
        monkeypatch.setenv("SHARD_COUNT", "8")
        monkeypatch.setenv("ROLLUP_INTERVAL", "30")
        monkeypatch.setenv("SHARD_TEMPLATE", '{"count": 0}')

        definition = CounterDefinition.from_environment()

        assert definition == CounterDefinition("likes", 8, {"count": 0}, 30.0)

    def test_from_environment_with_prefix_and_defaults(self, monkeypatch):
        monkeypatch.setenv("VIEWS_COUNTER_NAME", "views")

        definition = CounterDefinition.from_environment(prefix="VIEWS_")

        assert definition.name == "views"
        assert definition.shard_count == 10
        assert definition.rollup_interval == 60
        assert definition.default_shard_template == {}

    def test_from_environment_requires_name(self, monkeypatch):
        monkeypatch.delenv("COUNTER_NAME", raising=False)
        with pytest.raises(KeyError):
            CounterDefinition.from_environment()


class TestRollupResult:
    """Tests for RollupResult."""

    def test_to_dict(self):
        result = RollupResult(
            pages_fetched=2,
            shards_scanned=5,
            parents_rolled_up=2,
            shards_deleted=5,
            increments_applied=1,
            totals={"posts/p1": {"count": 15}},
        )
        assert result.to_dict() == {
            "pages_fetched": 2,
            "shards_scanned": 5,
            "parents_rolled_up": 2,
            "shards_deleted": 5,
            "increments_applied": 1,
            "totals": {"posts/p1": {"count": 15}},
        }
