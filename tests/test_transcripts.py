# ABOUTME: Tests for transcript parsing of Copilot CLI and Claude Code sessions.
# ABOUTME: Uses the sample transcripts under tests/fixtures.

import json
from datetime import timedelta
from pathlib import Path

import pytest

from session_replay.errors import TranscriptError
from session_replay.parsers import (
    ASSISTANT,
    THINKING,
    TOOL_RESULT,
    TOOL_START,
    USER,
    extract_content,
    is_claude_format,
    load_transcript,
)


class TestCopilotEvents:
    """Tests for events.jsonl parsing."""

    def test_metadata_from_session_start(self, copilot_events_path: Path) -> None:
        """Header fields come from session.start and the directory name."""
        transcript = load_transcript(copilot_events_path)

        assert transcript.agent == "copilot"
        assert transcript.session_id == "3f2504e0-4f89-11d3-9a0c-0305e82c3301"
        assert transcript.version == "0.0.339"
        assert transcript.cwd == "/work/project"
        assert transcript.branch == "feature/replay"
        assert transcript.duration == timedelta(seconds=70)

    def test_malformed_lines_are_skipped(self, copilot_events_path: Path) -> None:
        """The non-JSON line is dropped and everything around it is kept."""
        transcript = load_transcript(copilot_events_path)

        assert transcript.event_count == 8
        assert [turn.kind for turn in transcript.turns] == [
            USER,
            ASSISTANT,
            TOOL_START,
            TOOL_RESULT,
            TOOL_START,
            TOOL_RESULT,
            ASSISTANT,
        ]

    def test_turn_details(self, copilot_events_path: Path) -> None:
        """Tool requests, reasoning, arguments and result status are kept."""
        turns = load_transcript(copilot_events_path).turns

        assert turns[0].text == "List the files in src"
        assert turns[1].tool_requests == ["bash"]
        assert turns[1].reasoning == "The user wants a listing."
        assert turns[2].tool_name == "Bash"
        assert turns[2].arguments["description"] == "List source files"
        assert turns[3].text == "cli.py\nmodels.py"
        assert not turns[3].is_error
        assert turns[5].is_error
        assert turns[5].text == "File does not exist"

    def test_session_id_from_event_ids_outside_uuid_dir(self, tmp_path: Path) -> None:
        """Without a UUID parent directory the id prefix of the first event is used."""
        path = tmp_path / "events.jsonl"
        path.write_text(json.dumps({"type": "user.message", "id": "abc.1", "data": {"content": "hi"}}) + "\n")

        transcript = load_transcript(path)

        assert transcript.session_id == "abc"

    def test_tail_keeps_last_turns(self, copilot_events_path: Path) -> None:
        transcript = load_transcript(copilot_events_path, tail=2)

        assert [turn.kind for turn in transcript.turns] == [TOOL_RESULT, ASSISTANT]
        assert transcript.event_count == 8

    def test_max_bytes_reads_only_the_end_of_the_file(self, tmp_path: Path) -> None:
        """Only whole lines inside the last max_bytes are parsed."""
        path = tmp_path / "events.jsonl"
        lines = [
            json.dumps({"type": "user.message", "id": f"abc.{n}", "data": {"content": f"message {n:02d}"}}) + "\n"
            for n in range(20)
        ]
        path.write_text("".join(lines), encoding="utf-8")
        last_three = sum(len(line.encode("utf-8")) for line in lines[-3:])

        transcript = load_transcript(path, max_bytes=last_three + 5)

        assert transcript.event_count == 3
        assert [turn.text for turn in transcript.turns] == ["message 17", "message 18", "message 19"]
        assert load_transcript(path, max_bytes=10_000_000).event_count == 20


class TestClaudeTranscript:
    """Tests for Claude Code session file parsing."""

    def test_detects_claude_format(self, claude_transcript_path: Path, copilot_events_path: Path) -> None:
        assert is_claude_format(claude_transcript_path)
        assert not is_claude_format(copilot_events_path)

    def test_metadata(self, claude_transcript_path: Path) -> None:
        transcript = load_transcript(claude_transcript_path)

        assert transcript.agent == "claude"
        assert transcript.session_id == "9b2c6f1e-5a3d-4c8e-8f1a-2b3c4d5e6f70"
        assert transcript.version == "2.0.1"
        assert transcript.branch == "main"
        assert transcript.cwd == "/work/claude"
        assert transcript.duration == timedelta(seconds=15)

    def test_content_blocks_become_turns(self, claude_transcript_path: Path) -> None:
        """Thinking, text and tool_use blocks split into separate turns."""
        turns = load_transcript(claude_transcript_path).turns

        assert [turn.kind for turn in turns] == [
            USER,
            THINKING,
            ASSISTANT,
            TOOL_START,
            TOOL_RESULT,
            USER,
            TOOL_RESULT,
            ASSISTANT,
        ]
        assert turns[1].text == "I should run pytest."
        assert turns[3].tool_name == "Bash"
        assert turns[3].arguments == {"command": "pytest -q"}
        assert turns[4].text == "3 passed"
        assert turns[4].tool_id == "toolu_1"

    def test_queued_messages_and_rejections(self, claude_transcript_path: Path) -> None:
        turns = load_transcript(claude_transcript_path).turns

        assert turns[5].queued
        assert turns[5].text == "also check lint"
        assert turns[6].is_error
        assert "doesn't want to proceed" in turns[6].text


class TestLoadErrors:
    """Tests for transcripts that cannot be replayed."""

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(TranscriptError):
            load_transcript(tmp_path / "absent.jsonl")

    def test_directory_is_rejected(self, tmp_path: Path) -> None:
        with pytest.raises(TranscriptError):
            load_transcript(tmp_path)

    def test_file_without_events(self, tmp_path: Path) -> None:
        """A file with only blank or malformed lines has nothing to replay."""
        path = tmp_path / "events.jsonl"
        path.write_text("\n garbage\n\n")

        with pytest.raises(TranscriptError, match="No events"):
            load_transcript(path)


class TestExtractContent:
    """Tests for flattening tool result payloads."""

    def test_string_and_dict(self) -> None:
        assert extract_content("plain") == "plain"
        assert extract_content({"content": "inner"}) == "inner"
        assert extract_content(None) == ""

    def test_text_blocks_are_joined(self) -> None:
        assert extract_content([{"type": "text", "text": "a"}, "b"]) == "a\nb"

    def test_other_values_become_json(self) -> None:
        assert extract_content({"exit": 1}) == '{"exit": 1}'
