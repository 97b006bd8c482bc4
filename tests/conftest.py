"""
Pytest configuration and fixtures.
"""
from unittest.mock import MagicMock

import pytest

from tests.helpers import make_response
from update_firewall import FirewallSyncConfig, Settings

IPV4_BODY = "173.245.48.0/20\n103.21.244.0/22\n"
IPV6_BODY = "2400:cb00::/32\r\n2606:4700::/32\r\n"


@pytest.fixture
def settings():
    return Settings(api_token="test-token", ports="80,443", firewall_id="12345")


@pytest.fixture
def session():
    """
    A fake requests session answering the Cloudflare endpoints with two
    ranges each and the Hetzner endpoints with success.
    """
    fake = MagicMock()
    ranges = {
        FirewallSyncConfig.CLOUDFLARE_IPV4_URL: make_response(200, IPV4_BODY),
        FirewallSyncConfig.CLOUDFLARE_IPV6_URL: make_response(200, IPV6_BODY),
    }
    fake.get.side_effect = lambda url, **kwargs: ranges[url]
    fake.put.return_value = make_response(200, '{"firewall": {}}')
    fake.post.return_value = make_response(
        201, json_data={"actions": [{"id": 1, "command": "set_firewall_rules", "status": "running"}]}
    )
    return fake
