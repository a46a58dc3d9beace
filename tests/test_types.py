"""Tests for record types and their JSON forms."""

from datetime import datetime, timezone

import pytest

from opencontext.types import (
    VALID_ACTION_TYPE_VALUES,
    ActionType,
    ArchiveStaleAction,
    AutoTagAction,
    CreateGapStubsAction,
    EntryRef,
    ImprovementAction,
    MergeDuplicatesAction,
    PromoteToTypeAction,
    ResolveContradictionsAction,
    SuggestSchemaAction,
    TypePromotion,
    UnrecognizedAction,
    action_from_dict,
    parse_datetime,
    to_iso,
)


class TestDatetimes:
    def test_parse_z_suffix(self):
        """Should parse a trailing Z as UTC."""
        assert parse_datetime("2025-06-01T12:00:00.000Z") == datetime(
            2025, 6, 1, 12, tzinfo=timezone.utc
        )

    def test_naive_is_utc(self):
        """Should treat a naive timestamp as UTC."""
        assert parse_datetime("2025-06-01T12:00:00").tzinfo is not None

    @pytest.mark.parametrize("value", [None, "", "yesterday", "2025-13-40", 5, ["2025-06-01"]])
    def test_unreadable_is_none(self, value):
        """Should return None for anything that is not an ISO string."""
        assert parse_datetime(value) is None

    def test_to_iso_round_trip(self):
        """Should parse back what to_iso formats."""
        dt = datetime(2025, 6, 1, 12, 30, tzinfo=timezone.utc)
        assert parse_datetime(to_iso(dt)) == dt


class TestActionPayloads:
    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"type": "auto_tag", "entries": [{"id": "a"}]}, AutoTagAction((EntryRef("a"),))),
            (
                {"type": "merge_duplicates", "pairs": [["a", "b"]]},
                MergeDuplicatesAction((("a", "b"),)),
            ),
            (
                {"type": "promote_to_type", "entries": [{"id": "a", "suggestedType": "decision"}]},
                PromoteToTypeAction((TypePromotion("a", "decision"),)),
            ),
            (
                {"type": "archive_stale", "entries": [{"id": "a", "updatedAt": "2024-01-01"}]},
                ArchiveStaleAction((EntryRef("a", "2024-01-01"),)),
            ),
            ({"type": "create_gap_stubs", "queries": ["vpn"]}, CreateGapStubsAction(("vpn",))),
            (
                {"type": "resolve_contradictions", "contradictions": [{"archiveId": "a"}]},
                ResolveContradictionsAction(({"archiveId": "a"},)),
            ),
            (
                {"type": "suggest_schema", "suggestions": [{"name": "meeting"}]},
                SuggestSchemaAction(({"name": "meeting"},)),
            ),
        ],
    )
    def test_decode_and_encode(self, payload, expected):
        """Should decode each payload to its variant and encode it back."""
        action = action_from_dict(payload)
        assert action == expected
        assert action.to_dict() == payload

    def test_every_action_type_decodes_to_its_variant(self):
        """Should decode every known type to a known variant."""
        for action_type in ActionType:
            action = action_from_dict({"type": action_type.value})
            assert action.type == action_type.value
            assert not isinstance(action, UnrecognizedAction)
        assert VALID_ACTION_TYPE_VALUES == {t.value for t in ActionType}

    def test_unknown_type_is_preserved(self):
        """Should keep an unknown type and its fields."""
        action = action_from_dict({"type": "reindex", "depth": 2})
        assert isinstance(action, UnrecognizedAction)
        assert action.type == "reindex"
        assert action.to_dict() == {"type": "reindex", "depth": 2}

    def test_base_action_cannot_be_instantiated(self):
        """Should reject the bare action base at construction."""
        with pytest.raises(TypeError):
            ImprovementAction()

    def test_affected_entries(self):
        """Should report affected entries and item counts."""
        assert ArchiveStaleAction((EntryRef("a"), EntryRef("b"))).affected_entry_ids() == ["a", "b"]
        assert MergeDuplicatesAction((("a", "b"),)).affected_entry_ids() == []
        assert CreateGapStubsAction(("vpn", "ssh")).item_count() == 2
