"""Tests for plugin configuration and settings loading."""

import json

import pytest

from opsbridge.config.plugin_config import load_plugin_identities, parse_plugin_config
from opsbridge.config.settings import Settings
from opsbridge.core.exceptions import ConfigurationError
from opsbridge.core.plugin_system.plugin_manager import PluginManager


def test_load_plugin_identities(tmp_path):
    """Test a valid config file yields identities in order."""
    config_file = tmp_path / "plugins.json"
    config_file.write_text(json.dumps([
        {"name": "agentic-tools", "url": "http://agentic-tools:8080/", "required": True},
        {"name": "helm-tools", "url": "http://helm-tools:8080", "invokeTimeout": 300},
    ]))

    identities = load_plugin_identities(config_file)

    assert [i.name for i in identities] == ["agentic-tools", "helm-tools"]
    assert identities[0].url == "http://agentic-tools:8080"
    assert identities[0].required
    assert identities[1].invoke_timeout == 300


def test_missing_file_means_no_plugins(tmp_path):
    assert load_plugin_identities(tmp_path / "absent.json") == []


def test_invalid_json_raises(tmp_path):
    config_file = tmp_path / "plugins.json"
    config_file.write_text("[{not json")

    with pytest.raises(ConfigurationError):
        load_plugin_identities(config_file)


@pytest.mark.parametrize("entries", [
    {"name": "not-a-list"},
    ["not-an-object"],
    [{"name": "no-address"}],
    [{"name": "dup", "url": "http://a:1"}, {"name": "dup", "url": "http://b:1"}],
])
def test_invalid_entries_raise(entries):
    with pytest.raises(ConfigurationError):
        parse_plugin_config(entries)


def test_default_names_and_resolver():
    """Test unnamed entries get a positional name and images are resolved."""
    def resolver(identity):
        return f"http://{identity.name}.plugins.svc:{identity.port}/"

    identities = parse_plugin_config(
        [
            {"url": "http://first:8080"},
            {"name": "helm-tools", "image": "ghcr.io/acme/helm-tools:1.2", "port": 9090},
        ],
        resolver=resolver,
    )

    assert identities[0].name == "plugin-0"
    assert identities[1].url == "http://helm-tools.plugins.svc:9090"
    assert identities[1].is_resolved


def test_unresolved_without_resolver():
    identities = parse_plugin_config(
        [{"name": "helm-tools", "image": "ghcr.io/acme/helm-tools:1.2", "port": 9090}]
    )
    assert not identities[0].is_resolved


def test_settings_from_environment(monkeypatch):
    """Test OPSBRIDGE_ prefixed variables override defaults."""
    monkeypatch.setenv("OPSBRIDGE_PLUGIN_INVOKE_TIMEOUT", "45")
    monkeypatch.setenv("OPSBRIDGE_PLUGIN_MAX_RETRIES", "5")
    monkeypatch.setenv("OPSBRIDGE_ENVIRONMENT", "production")

    app_settings = Settings()
    manager = PluginManager.from_settings([], app_settings)

    assert app_settings.plugin_invoke_timeout == 45.0
    assert app_settings.is_production
    assert manager.client.invoke_timeout == 45.0
    assert manager.client.max_retries == 5
