"""
Tests for the fixed-window RateLimitPolicy.
"""

import pytest

from config_manager import RateLimitConfig, RateLimitGroupConfig
from services.rate_limiter import RateLimitPolicy, is_trusted_proxy, resolve_client_ip


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def small_policy(clock):
    config = RateLimitConfig(groups={"documents": RateLimitGroupConfig(max_requests=2, window_seconds=60)})
    return RateLimitPolicy(config, clock=clock)


# ============================================
# GROUP RESOLUTION TESTS
# ============================================

class TestResolveGroup:
    """Tests for mapping paths to groups."""

    @pytest.mark.parametrize("path,group", [
        ("/api/documents", "documents"),
        ("/api/documents/", "documents"),
        ("/api/documents/7", "documents"),
        ("/api/documents/7/file", "documents"),
        ("/api/documents/7/process", "document-processing"),
        ("/api/documents/7/trash", "document-processing"),
        ("/api/documents/7/restore", "document-processing"),
        ("/api/documents/7/metadata", "metadata"),
        ("/api/metadata/options/policies", "metadata"),
        ("/api/documents/7/history", "document-history"),
        ("/api/documents/7/history/action-types", "document-history"),
        ("/api/health-check", "api"),
    ])
    def test_default_groups(self, path, group):
        assert RateLimitPolicy().resolve_group(path) == group

    def test_paths_outside_api_are_unlimited(self):
        assert RateLimitPolicy().resolve_group("/docs") is None

    def test_unconfigured_group_is_skipped(self, small_policy):
        assert small_policy.resolve_group("/api/documents/7/process") == "documents"
        assert small_policy.resolve_group("/api/health-check") is None


# ============================================
# COUNTING TESTS
# ============================================

class TestHit:
    """Tests for window counting."""

    def test_counts_down(self, small_policy):
        first = small_policy.hit("documents", "1.2.3.4")
        second = small_policy.hit("documents", "1.2.3.4")

        assert first.allowed and second.allowed
        assert first.remaining == 1
        assert second.remaining == 0
        assert first.reset_at == 1020

    def test_blocks_when_exhausted(self, small_policy):
        small_policy.hit("documents", "1.2.3.4")
        small_policy.hit("documents", "1.2.3.4")

        blocked = small_policy.hit("documents", "1.2.3.4")

        assert not blocked.allowed
        assert blocked.remaining == 0
        assert blocked.retry_after == 20

    def test_clients_are_independent(self, small_policy):
        small_policy.hit("documents", "a")
        small_policy.hit("documents", "a")

        assert small_policy.hit("documents", "b").allowed

    def test_window_resets(self, small_policy, clock):
        small_policy.hit("documents", "a")
        small_policy.hit("documents", "a")
        assert not small_policy.hit("documents", "a").allowed

        clock.now = 1021.0

        result = small_policy.hit("documents", "a")
        assert result.allowed
        assert result.remaining == 1
        assert result.reset_at == 1080

    def test_expired_windows_are_evicted(self, small_policy, clock):
        small_policy.hit("documents", "a")
        clock.now = 1030.0
        small_policy.hit("documents", "b")
        assert set(small_policy._windows) == {("documents", "a"), ("documents", "b")}

        clock.now = 1061.0
        small_policy.hit("documents", "b")

        assert set(small_policy._windows) == {("documents", "b")}
        assert small_policy._windows[("documents", "b")] == (1020, 2)

    def test_rotating_clients_do_not_accumulate(self, small_policy, clock):
        for second in range(0, 600, 10):
            clock.now = 1000.0 + second
            small_policy.hit("documents", f"client-{second}")

        assert len(small_policy._windows) <= 12

    def test_reset_clears_counters(self, small_policy):
        small_policy.hit("documents", "a")
        small_policy.hit("documents", "a")

        small_policy.reset()

        assert small_policy.hit("documents", "a").allowed


# ============================================
# CLIENT ADDRESS TESTS
# ============================================

class TestClientAddress:
    """Tests for X-Forwarded-For handling."""

    def test_forwarded_header_ignored_from_untrusted_peer(self):
        assert resolve_client_ip("203.0.113.9", "1.1.1.1", []) == "203.0.113.9"
        assert resolve_client_ip("203.0.113.9", "1.1.1.1", ["10.0.0.1"]) == "203.0.113.9"

    def test_forwarded_header_used_behind_trusted_proxy(self):
        assert resolve_client_ip("10.0.0.1", "198.51.100.7", ["10.0.0.1"]) == "198.51.100.7"

    def test_rightmost_untrusted_hop_wins(self):
        forwarded = "1.1.1.1, 198.51.100.7, 10.0.0.2"

        assert resolve_client_ip("10.0.0.1", forwarded, ["10.0.0.0/8"]) == "198.51.100.7"

    def test_all_hops_trusted(self):
        assert resolve_client_ip("10.0.0.1", "10.0.0.5", ["10.0.0.0/8"]) == "10.0.0.5"

    def test_missing_header_uses_peer(self):
        assert resolve_client_ip("10.0.0.1", None, ["10.0.0.1"]) == "10.0.0.1"

    @pytest.mark.parametrize("host,trusted,expected", [
        ("10.1.2.3", ["10.0.0.0/8"], True),
        ("127.0.0.1", ["127.0.0.1"], True),
        ("192.168.0.1", ["10.0.0.0/8"], False),
        ("testclient", ["testclient"], True),
        ("testclient", ["10.0.0.0/8", "not-a-network"], False),
    ])
    def test_is_trusted_proxy(self, host, trusted, expected):
        assert is_trusted_proxy(host, trusted) is expected


class TestHeaders:
    """Tests for the response headers."""

    def test_allowed_headers(self, small_policy):
        headers = small_policy.hit("documents", "a").headers()

        assert headers == {
            "X-RateLimit-Limit": "2",
            "X-RateLimit-Remaining": "1",
            "X-RateLimit-Reset": "1020",
        }

    def test_blocked_headers_include_retry_after(self, small_policy):
        for _ in range(2):
            small_policy.hit("documents", "a")

        headers = small_policy.hit("documents", "a").headers()

        assert headers["Retry-After"] == "20"
        assert headers["X-RateLimit-Remaining"] == "0"

    def test_enabled_follows_config(self):
        assert RateLimitPolicy().enabled
        assert not RateLimitPolicy(RateLimitConfig(enabled=False)).enabled
