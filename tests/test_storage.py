"""Tests for the SQLite store and its read queries."""

import pytest

from transcript_miner.models import Artifact, Entry
from transcript_miner.storage import duration_seconds


def _conversation(store, session_id, started_at=None, project_id=None):
    conv = store.find_or_create_conversation(session_id, f"/logs/{session_id}.jsonl", "jsonl")
    if project_id:
        store.set_project(conv.id, project_id)
    if started_at:
        store.insert_entry(Entry(
            conversation_id=conv.id, entry_hash=f"h-{session_id}", entry_index=0,
            role="user", content="hi", timestamp=started_at,
        ))
        store.update_conversation_stats(conv.id)
    return conv.id


def _artifact(conv_id, content_hash, **fields):
    fields.setdefault("artifact_type", "code_block")
    return Artifact(conversation_id=conv_id, content_hash=content_hash, **fields)


class TestCheckpoints:
    def test_missing(self, store):
        assert store.get_checkpoint("/nope.jsonl") is None

    def test_upsert(self, store):
        store.save_checkpoint("/a.jsonl", 3, "abc")
        store.save_checkpoint("/a.jsonl", 7, "def")

        cp = store.get_checkpoint("/a.jsonl")
        assert cp.last_line_number == 7
        assert cp.last_entry_hash == "def"
        assert cp.last_parsed_at is not None


class TestConversations:
    def test_find_or_create_records_metadata_on_creation_only(self, store):
        first = store.find_or_create_conversation(
            "s1", "/a.jsonl", "jsonl",
            {"model": "m1", "version": "1.0", "git_branch": "main", "cwd": "/w"},
        )
        again = store.find_or_create_conversation("s1", "/b.jsonl", "jsonl", {"model": "m2"})

        assert again.id == first.id
        assert again.model_used == "m1"
        assert again.source_file_path == "/a.jsonl"
        assert again.working_directory == "/w"

    def test_set_project_keeps_existing(self, store):
        conv_id = _conversation(store, "s1", project_id="p1")
        store.set_project(conv_id, "p2")
        assert store.get_conversation(conv_id).project_id == "p1"

    def test_get_missing(self, store):
        assert store.get_conversation(42) is None

    def test_list_is_most_recent_first(self, store):
        _conversation(store, "old", "2025-01-01T00:00:00Z")
        _conversation(store, "new", "2025-03-01T00:00:00Z")
        _conversation(store, "mid", "2025-02-01T00:00:00Z")

        assert [c.session_id for c in store.list_conversations()] == ["new", "mid", "old"]

    def test_list_filters(self, store):
        a = _conversation(store, "a", "2025-01-01T00:00:00Z", project_id="p1")
        b = _conversation(store, "b", "2025-02-01T00:00:00Z", project_id="p1")
        _conversation(store, "c", "2025-03-01T00:00:00Z", project_id="p2")
        store.insert_artifact(_artifact(a, "e1", artifact_type="tool_call", outcome="error"))
        store.insert_artifact(_artifact(b, "ok", artifact_type="tool_call", outcome="success"))

        assert [c.session_id for c in store.list_conversations(project_id="p1")] == ["b", "a"]
        assert [c.session_id for c in store.list_conversations(since="2025-02-01")] == ["c", "b"]

        [errored] = store.list_conversations(has_errors=True)
        assert errored.session_id == "a"
        assert errored.error_count == 1
        assert errored.artifact_count == 1

    def test_list_pagination(self, store):
        for month in range(1, 6):
            _conversation(store, f"s{month}", f"2025-0{month}-01T00:00:00Z")

        page = store.list_conversations(limit=2, offset=2)
        assert [c.session_id for c in page] == ["s3", "s2"]

    def test_stats_without_timestamps(self, store):
        conv = store.find_or_create_conversation("t", "/t.txt", "txt")
        store.insert_entry(Entry(conversation_id=conv.id, entry_hash="x", entry_index=0, role="user", content="a"))
        store.update_conversation_stats(conv.id)

        conv = store.get_conversation(conv.id)
        assert conv.message_count == 1
        assert conv.started_at is None
        assert conv.duration_seconds is None


class TestEntries:
    def test_duplicate_hash_is_rejected(self, store):
        conv_id = _conversation(store, "s1")
        entry = Entry(conversation_id=conv_id, entry_hash="same", entry_index=0, role="user", content="a")

        assert store.insert_entry(entry) is True
        assert store.insert_entry(entry.model_copy(update={"entry_index": 1})) is False

    def test_same_hash_in_another_conversation_is_fine(self, store):
        a = _conversation(store, "a")
        b = _conversation(store, "b")
        for conv_id in (a, b):
            assert store.insert_entry(
                Entry(conversation_id=conv_id, entry_hash="same", entry_index=0, role="user", content="a")
            )

    def test_next_entry_index(self, store):
        conv_id = _conversation(store, "s1")
        assert store.next_entry_index(conv_id) == 0
        store.insert_entry(Entry(conversation_id=conv_id, entry_hash="x", entry_index=4, role="user", content="a"))
        assert store.next_entry_index(conv_id) == 5

    def test_list_filters_by_role_in_sequence_order(self, store):
        conv_id = _conversation(store, "s1")
        for i, role in enumerate(["user", "assistant", "user", "assistant"]):
            store.insert_entry(Entry(
                conversation_id=conv_id, entry_hash=f"h{i}", entry_index=i, role=role, content=f"m{i}",
            ))

        assert [e.content for e in store.list_entries(conv_id, role="assistant")] == ["m1", "m3"]
        assert [e.content for e in store.list_entries(conv_id, limit=2, offset=1)] == ["m1", "m2"]
        assert len(store.list_entries(conv_id, limit=None)) == 4


class TestArtifacts:
    def test_duplicate_insert_is_rejected_by_the_store(self, store):
        conv_id = _conversation(store, "s1")
        artifact = _artifact(conv_id, "h1", content="x")

        assert store.insert_artifact(artifact) is True
        assert store.artifact_exists(conv_id, "h1")
        assert store.insert_artifact(artifact) is False

    def test_metadata_round_trips(self, store):
        conv_id = _conversation(store, "s1")
        store.insert_artifact(_artifact(
            conv_id, "h1", artifact_type="tool_call", tool_name="Bash",
            metadata={"tool_use_id": "t1", "input_keys": ["command"]}, output_truncated=True,
        ))

        [a] = store.list_artifacts(conv_id)
        assert a.metadata == {"tool_use_id": "t1", "input_keys": ["command"]}
        assert a.output_truncated is True

    def test_list_filters(self, store):
        conv_id = _conversation(store, "s1")
        store.insert_artifact(_artifact(conv_id, "1", artifact_type="tool_call", tool_name="Bash", outcome="error"))
        store.insert_artifact(_artifact(conv_id, "2", artifact_type="tool_call", tool_name="Read", outcome="success"))
        store.insert_artifact(_artifact(conv_id, "3", artifact_type="code_block", language="python"))

        assert [a.content_hash for a in store.list_artifacts(conv_id, artifact_type="tool_call")] == ["1", "2"]
        assert [a.content_hash for a in store.list_artifacts(conv_id, tool_name="Read")] == ["2"]
        assert [a.content_hash for a in store.list_artifacts(conv_id, outcome="error")] == ["1"]
        assert [a.content_hash for a in store.list_artifacts(conv_id, limit=1, offset=2)] == ["3"]

    def test_search(self, store):
        a = _conversation(store, "a", project_id="p1")
        b = _conversation(store, "b", project_id="p2")
        store.insert_artifact(_artifact(a, "1", content="def parse_file(path):"))
        store.insert_artifact(_artifact(b, "2", content="parse_file(store, p)", artifact_type="tool_call"))
        store.insert_artifact(_artifact(b, "3", content="unrelated"))

        assert {r.content_hash for r in store.search_artifacts("parse_file")} == {"1", "2"}
        [scoped] = store.search_artifacts("parse_file", project_id="p1")
        assert scoped.content_hash == "1"
        assert scoped.project_id == "p1"
        assert [r.content_hash for r in store.search_artifacts("parse", artifact_type="tool_call")] == ["2"]

    def test_search_treats_wildcards_literally(self, store):
        conv_id = _conversation(store, "s1")
        store.insert_artifact(_artifact(conv_id, "1", content="100% done"))
        store.insert_artifact(_artifact(conv_id, "2", content="1000 done"))

        assert [r.content_hash for r in store.search_artifacts("0%")] == ["1"]

    def test_stats(self, store):
        a = _conversation(store, "a")
        b = _conversation(store, "b")
        store.insert_artifact(_artifact(a, "1", artifact_type="tool_call", outcome="error"))
        store.insert_artifact(_artifact(a, "2", artifact_type="tool_result", outcome="error"))
        store.insert_artifact(_artifact(a, "3", artifact_type="code_block"))
        store.insert_artifact(_artifact(b, "4", artifact_type="json_object"))

        per_conv = store.artifact_stats(a)
        assert (per_conv.total, per_conv.tool_calls, per_conv.tool_results, per_conv.code_blocks) == (3, 1, 1, 1)
        assert per_conv.errors == 2

        overall = store.artifact_stats()
        assert overall.total == 4
        assert overall.json_objects == 1


class TestDurationSeconds:
    @pytest.mark.parametrize("start,end,expected", [
        ("2025-01-01T10:00:00Z", "2025-01-01T10:01:05Z", 65),
        ("2025-01-01T10:00:00.500Z", "2025-01-01T10:00:02.000Z", 1),
        ("2025-01-01T10:00:00", "2025-01-01T11:00:00", 3600),
        (None, "2025-01-01T10:00:00Z", None),
        ("yesterday", "today", None),
    ])
    def test_values(self, start, end, expected):
        assert duration_seconds(start, end) == expected
