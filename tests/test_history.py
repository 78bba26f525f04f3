"""Tests for the per-conversation turn buffer."""

import json

from life_graph.history import ConversationHistory


class TestConversationHistory:
    def test_append_and_read_in_order(self, history):
        history.append("c1", "hello", "hi")
        history.append("c1", "how are you", "fine")
        turns = history.get_turns("c1")
        assert [(t.user_text, t.assistant_text) for t in turns] == [
            ("hello", "hi"), ("how are you", "fine"),
        ]
        assert turns[0].timestamp <= turns[1].timestamp

    def test_keeps_only_last_n(self, history):
        for i in range(8):
            history.append("c1", f"q{i}", f"a{i}")
        turns = history.get_turns("c1")
        assert len(turns) == 5
        assert turns[0].user_text == "q3"
        assert turns[-1].user_text == "q7"

    def test_limit(self, history):
        for i in range(3):
            history.append("c1", f"q{i}", f"a{i}")
        assert [t.user_text for t in history.get_turns("c1", limit=2)] == ["q1", "q2"]
        assert history.get_turns("c1", limit=0) == []

    def test_conversations_are_separate(self, history):
        history.append("a", "x", "y")
        assert history.get_turns("b") == []
        assert history.conversation_ids() == ["a"]

    def test_unknown_conversation_is_empty(self, history):
        assert history.get_turns("never") == []

    def test_id_is_sanitised_for_filename(self, history):
        history.append("../../etc/passwd", "x", "y")
        assert history.conversation_ids() == ["etcpasswd"]
        assert len(history.get_turns("etcpasswd")) == 1

    def test_corrupt_file_treated_as_empty(self, history):
        path = history.cache_dir / "conv_broken.json"
        path.write_text("{not json")
        assert history.get_turns("broken") == []
        history.append("broken", "x", "y")
        assert len(history.get_turns("broken")) == 1

    def test_file_format(self, history):
        history.append("c1", "hello", "hi")
        raw = json.loads((history.cache_dir / "conv_c1.json").read_text())
        assert raw[0]["user_text"] == "hello"
        assert raw[0]["assistant_text"] == "hi"
        assert "timestamp" in raw[0]

    def test_clear(self, history):
        history.append("c1", "x", "y")
        assert history.clear("c1") is True
        assert history.get_turns("c1") == []
        assert history.clear("c1") is False

    def test_defaults_from_config(self, monkeypatch, tmp_path):
        monkeypatch.setenv("LIFE_GRAPH_HISTORY_DIR", str(tmp_path / "h"))
        monkeypatch.setenv("LIFE_GRAPH_HISTORY_TURNS", "2")
        h = ConversationHistory()
        assert h.max_turns == 2
        assert h.cache_dir == tmp_path / "h"
        assert h.cache_dir.is_dir()
