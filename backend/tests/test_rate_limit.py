"""Tests for rate limit keys and enforcement."""

from unittest.mock import MagicMock, patch

from fakes import add_user
from sasa.rate_limit import get_client_ip, get_rate_limit_key


def make_request(headers: dict | None = None, client_ip: str = "203.0.113.9"):
    request = MagicMock()
    request.headers = headers or {}
    request.client.host = client_ip
    return request


class TestRateLimitKey:
    def test_bearer_token_keys_by_subject(self, settings, token_for):
        token = token_for({"id": "user-42", "role": "provider"})
        request = make_request({"authorization": f"Bearer {token}"})

        assert get_rate_limit_key(request) == "user:user-42"

    def test_anonymous_keys_by_ip(self):
        assert get_rate_limit_key(make_request()) == "ip:203.0.113.9"

    def test_garbage_token_falls_back_to_ip(self):
        request = make_request({"authorization": "Bearer garbage"})
        assert get_rate_limit_key(request) == "ip:203.0.113.9"

    def test_forwarded_for_ignored_from_untrusted_peer(self):
        request = make_request({"x-forwarded-for": "198.51.100.1"})
        assert get_client_ip(request) == "203.0.113.9"

    def test_forwarded_for_honored_from_trusted_proxy(self):
        request = make_request({"x-forwarded-for": "198.51.100.1, 10.0.0.2"}, client_ip="10.0.0.2")

        with patch("sasa.rate_limit.get_remote_address", return_value="10.0.0.2"):
            assert get_client_ip(request) == "198.51.100.1"


class TestRateLimitEnforcement:
    def test_delete_limit(self, client, db, headers_for):
        user = add_user(db)
        headers = headers_for(user)

        statuses = [client.delete("/api/jobs/missing", headers=headers).status_code for _ in range(11)]

        assert statuses[:10] == [404] * 10
        assert statuses[10] == 429

    def test_limits_are_per_user(self, client, db, headers_for):
        first, second = add_user(db), add_user(db)
        for _ in range(10):
            client.delete("/api/jobs/missing", headers=headers_for(first))

        assert client.delete("/api/jobs/missing", headers=headers_for(second)).status_code == 404
