"""Tests for the session registry."""

from __future__ import annotations

from agentstream.sessions import SessionRegistry


class TestSessionRegistry:
    """Tests for SessionRegistry."""

    def test_begin_supersedes(self) -> None:
        registry = SessionRegistry()
        first, previous = registry.begin("s")
        assert previous is None
        second, _ = registry.begin("s")
        assert first.cancelled
        assert first.reason == "superseded"
        assert not second.cancelled
        assert registry.get_token("s") is second

    def test_stale_release_ignored(self) -> None:
        registry = SessionRegistry()
        first, _ = registry.begin("s")
        second, _ = registry.begin("s")
        registry.release("s", first)
        assert registry.get_token("s") is second
        registry.release("s", second)
        assert not registry.is_active("s")

    def test_cancel_is_scoped(self) -> None:
        registry = SessionRegistry()
        a, _ = registry.begin("a")
        b, _ = registry.begin("b")
        assert registry.cancel("a")
        assert a.cancelled
        assert not b.cancelled
        assert not registry.cancel("missing")

    def test_reset(self) -> None:
        registry = SessionRegistry()
        token, _ = registry.begin("a")
        registry.reset()
        assert token.cancelled
        assert registry.active_sessions == []
