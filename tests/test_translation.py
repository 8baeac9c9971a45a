"""Tests for model output classification and history translation."""

import pytest
from conftest import make_message

from workflow_agent.task_store import STATE_COMPLETED, STATE_INPUT_REQUIRED
from workflow_agent.translation import (
    DEFAULT_REPLY,
    FinalState,
    classify_final_state,
    extract_text,
    final_state_to_a2a,
    history_to_model_messages,
)


class TestClassifyFinalState:

    def test_completed(self):
        state, reply = classify_final_state("Your booking is confirmed.\nRoom 12.\nCOMPLETED")
        assert state is FinalState.COMPLETED
        assert reply == "Your booking is confirmed.\nRoom 12."
        assert final_state_to_a2a(state) == STATE_COMPLETED

    def test_awaiting_user_input(self):
        state, reply = classify_final_state("Which date?\nAWAITING_USER_INPUT")
        assert state is FinalState.INPUT_REQUIRED
        assert reply == "Which date?"
        assert final_state_to_a2a(state) == STATE_INPUT_REQUIRED

    def test_signal_is_case_and_whitespace_insensitive(self):
        state, _ = classify_final_state("ok\n  completed  \n\n")
        assert state is FinalState.COMPLETED

    def test_unrecognized_signal_defaults_to_completed(self):
        state, reply = classify_final_state("Here is the answer\nXYZ")
        assert state is FinalState.UNKNOWN
        assert reply == "Here is the answer"
        assert final_state_to_a2a(state) == STATE_COMPLETED

    @pytest.mark.parametrize("text", ["", None, "   \n  ", "COMPLETED"])
    def test_empty_reply_uses_placeholder(self, text):
        _, reply = classify_final_state(text)
        assert reply == DEFAULT_REPLY


class TestHistoryToModelMessages:

    def test_roles_and_part_selection(self):
        history = [
            make_message("first", "second"),
            make_message("a", "b", role="agent"),
        ]
        assert history_to_model_messages(history) == [
            {"role": "user", "content": [{"text": "first"}]},
            {"role": "model", "content": [{"text": "a"}, {"text": "b"}]},
        ]

    def test_messages_without_text_are_dropped(self):
        history = [
            make_message(parts=[{"kind": "file", "file": {"uri": "s3://x"}}]),
            make_message(parts=[{"kind": "text", "text": ""}]),
            make_message("kept"),
        ]
        assert history_to_model_messages(history) == [
            {"role": "user", "content": [{"text": "kept"}]},
        ]

    def test_first_text_part_skips_non_text_parts(self):
        history = [make_message(parts=[
            {"kind": "data", "data": {"x": 1}},
            {"kind": "text", "text": "question"},
        ])]
        assert history_to_model_messages(history) == [
            {"role": "user", "content": [{"text": "question"}]},
        ]

    def test_empty_history(self):
        assert history_to_model_messages([]) == []


def test_extract_text():
    assert extract_text(make_message("a", "b", role="agent")) == "a\nb"
    assert extract_text(None) == ""
