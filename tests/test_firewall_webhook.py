"""
Tests for the HTTP trigger and the scheduled entry point.
"""
from unittest.mock import patch

import pytest

import firewall_webhook
import update_firewall
from firewall_webhook import create_app, scheduled
from tests.helpers import make_response
from update_firewall import ConfigurationError, FirewallRulesError, RangeFetchError, Settings


@pytest.fixture
def updater_cls():
    with patch.object(firewall_webhook, "FirewallUpdater") as updater_cls:
        updater_cls.return_value.run.return_value = {"actions": []}
        yield updater_cls


def client_for(settings):
    app = create_app(settings)
    app.config["TESTING"] = True
    return app.test_client()


class TestTrigger:

    def test_success(self, settings, updater_cls):
        response = client_for(settings).post("/")

        assert response.status_code == 200
        assert response.get_data(as_text=True) == "Firewall updated successfully"
        updater_cls.assert_called_once_with(settings)

    def test_get_also_triggers(self, settings, updater_cls):
        assert client_for(settings).get("/").status_code == 200
        updater_cls.return_value.run.assert_called_once()

    def test_secret_required_when_configured(self, settings, updater_cls):
        settings.worker_secret = "s3cret"

        response = client_for(settings).post("/")

        assert response.status_code == 403
        assert response.get_data(as_text=True) == "Unauthorized for manual calls."
        updater_cls.assert_not_called()

    def test_wrong_secret_rejected(self, settings, updater_cls):
        settings.worker_secret = "s3cret"

        response = client_for(settings).post("/", headers={"Authorization": "Bearer s3cret"})

        assert response.status_code == 403
        updater_cls.assert_not_called()

    def test_matching_secret_accepted(self, settings, updater_cls):
        settings.worker_secret = "s3cret"

        response = client_for(settings).post("/", headers={"Authorization": "s3cret"})

        assert response.status_code == 200

    def test_missing_token_forbidden(self, updater_cls):
        settings = Settings(ports="80", firewall_id="1")

        response = client_for(settings).post("/")

        assert response.status_code == 403
        assert response.get_data(as_text=True) == "API_TOKEN is not defined. Please define it."
        updater_cls.assert_not_called()

    def test_missing_ports_is_server_error(self, updater_cls):
        settings = Settings(api_token="t", firewall_id="1")

        response = client_for(settings).post("/")

        assert response.status_code == 500
        assert "PORTS is not defined" in response.get_data(as_text=True)
        updater_cls.assert_not_called()

    def test_pipeline_error_returned_as_body(self, settings, updater_cls):
        updater_cls.return_value.run.side_effect = RangeFetchError("https://www.cloudflare.com/ips-v4/", "HTTP 500")

        response = client_for(settings).post("/")

        assert response.status_code == 500
        assert response.get_data(as_text=True) == "Failed to fetch https://www.cloudflare.com/ips-v4/: HTTP 500"

    def test_provider_error_returned_as_body(self, settings, updater_cls):
        updater_cls.return_value.run.side_effect = FirewallRulesError(400, "invalid_input")

        response = client_for(settings).post("/")

        assert response.status_code == 500
        assert "invalid_input" in response.get_data(as_text=True)

    def test_settings_read_from_environment(self, monkeypatch, tmp_path, updater_cls):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("API_TOKEN", "env-token")
        monkeypatch.setenv("PORTS", "443")
        monkeypatch.setenv("FIREWALL_ID", "42")
        monkeypatch.setenv("WORKER_SECRET", "abc")

        client = client_for(None)
        assert client.post("/").status_code == 403

        response = client.post("/", headers={"Authorization": "abc"})
        assert response.status_code == 200
        used = updater_cls.call_args[0][0]
        assert used.api_token == "env-token"
        assert used.port_list == ["443"]
        assert used.firewall_id == "42"

    def test_unreadable_set_rules_response(self, settings, session):
        session.post.return_value = make_response(201, "not json")

        with patch.object(update_firewall.requests, "Session", return_value=session):
            response = client_for(settings).post("/")

        assert response.status_code == 500
        assert response.get_data(as_text=True) == "Failed to apply firewall rules (HTTP 201): not json"

    def test_unexpected_error_returned_as_body(self, settings, updater_cls):
        updater_cls.return_value.run.side_effect = RuntimeError("unexpected")

        response = client_for(settings).post("/")

        assert response.status_code == 500
        assert response.get_data(as_text=True) == "unexpected"


class TestScheduled:

    def test_runs_without_authorization(self, settings, updater_cls):
        settings.worker_secret = "s3cret"

        assert scheduled(settings) == {"actions": []}
        updater_cls.assert_called_once_with(settings)

    def test_missing_setting_raises_before_update(self, updater_cls):
        with pytest.raises(ConfigurationError):
            scheduled(Settings(api_token="t", ports="80"))
        updater_cls.assert_not_called()

    def test_errors_propagate(self, settings, updater_cls):
        updater_cls.return_value.run.side_effect = FirewallRulesError(422, "bad")

        with pytest.raises(FirewallRulesError):
            scheduled(settings)

    def test_scheduled_main_exit_codes(self, settings, updater_cls):
        with patch.object(firewall_webhook, "setup_logging"), \
                patch.object(firewall_webhook.Settings, "from_env", return_value=settings):
            assert firewall_webhook.scheduled_main() == 0

            updater_cls.return_value.run.side_effect = FirewallRulesError(500, "down")
            assert firewall_webhook.scheduled_main() == 1
