"""
Tests for settings loading and validation.
"""

import json

import pytest

from k8s_duplicator.config.loader import (
    ControllerSettings,
    load_settings,
    parse_bind_address,
)
from k8s_duplicator.errors import ConfigurationError


class TestDefaults:
    """Tests for the built-in defaults."""

    def test_defaults(self):
        settings = load_settings(environ={})

        assert settings.workers == 1
        assert settings.leader_elect is False
        assert settings.lease_namespace == "default"
        assert settings.probe_bind_address == ":8081"
        assert settings.metrics_bind_address == ":8080"
        assert settings.resync_period_seconds == 36000
        assert settings.kubeconfig is None

    def test_defaults_are_valid(self):
        ControllerSettings().validate()


class TestSources:
    """Tests for reading and layering each source."""

    def test_individual_env_vars(self):
        settings = load_settings(environ={
            "DUPLICATOR_WORKERS": "4",
            "DUPLICATOR_LEADER_ELECT": "true",
            "DUPLICATOR_LEASE_ID": "prod",
            "DUPLICATOR_BACKOFF_BASE": "0.5",
            "KUBECONFIG": "/tmp/kubeconfig",
        })

        assert settings.workers == 4
        assert settings.leader_elect is True
        assert settings.lease_id == "prod"
        assert settings.backoff_base_seconds == 0.5
        assert settings.kubeconfig == "/tmp/kubeconfig"

    def test_pod_namespace_fallback(self):
        assert load_settings(environ={"POD_NAMESPACE": "ops"}).lease_namespace == "ops"

    def test_explicit_lease_namespace_beats_pod_namespace(self):
        settings = load_settings(environ={
            "POD_NAMESPACE": "ops",
            "DUPLICATOR_LEASE_NAMESPACE": "leases",
        })

        assert settings.lease_namespace == "leases"

    def test_master_json(self):
        settings = load_settings(environ={
            "DUPLICATOR_CONFIG": json.dumps({"workers": 3, "DUPLICATOR_METRICS_ADDRESS": "0"}),
        })

        assert settings.workers == 3
        assert settings.metrics_enabled is False

    def test_invalid_master_json_is_logged_not_fatal(self, caplog):
        settings = load_settings(environ={"DUPLICATOR_CONFIG": "{not json"})

        assert settings.workers == 1
        assert "Invalid DUPLICATOR_CONFIG JSON" in caplog.text

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("workers: 2\nresync_period_seconds: 60\nleader_elect: yes\n")

        settings = load_settings(path, environ={})

        assert settings.workers == 2
        assert settings.resync_period_seconds == 60.0
        assert settings.leader_elect is True

    def test_file_from_env(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("lease_id: blue\n")

        settings = load_settings(environ={"DUPLICATOR_CONFIG_FILE": str(path)})

        assert settings.lease_id == "blue"

    def test_precedence_env_over_json_over_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("workers: 2\nlease_id: file\nresync_period_seconds: 5\n")

        settings = load_settings(path, environ={
            "DUPLICATOR_CONFIG": json.dumps({"workers": 3, "lease_id": "json"}),
            "DUPLICATOR_WORKERS": "4",
        })

        assert settings.workers == 4
        assert settings.lease_id == "json"
        assert settings.resync_period_seconds == 5

    def test_unknown_keys_ignored(self, tmp_path, caplog):
        path = tmp_path / "settings.yaml"
        path.write_text("workers: 2\ncolour: blue\n")

        settings = load_settings(path, environ={})

        assert settings.workers == 2
        assert "colour" in caplog.text

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_settings(tmp_path / "absent.yaml", environ={})

    def test_file_must_be_mapping(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- workers\n")

        with pytest.raises(ConfigurationError):
            load_settings(path, environ={})

    def test_bad_number(self):
        with pytest.raises(ConfigurationError):
            load_settings(environ={"DUPLICATOR_WORKERS": "many"})

    def test_bad_bool(self):
        with pytest.raises(ConfigurationError):
            load_settings(environ={"DUPLICATOR_LEADER_ELECT": "maybe"})


class TestValidation:
    """Tests for consistency checks."""

    def test_workers_must_be_positive(self):
        with pytest.raises(ConfigurationError, match="workers"):
            ControllerSettings(workers=0).validate()

    def test_lease_timing_order(self):
        settings = ControllerSettings(
            leader_elect=True,
            lease_duration_seconds=10,
            renew_deadline_seconds=10,
        )

        with pytest.raises(ConfigurationError, match="lease_duration_seconds"):
            settings.validate()

    def test_lease_timings_ignored_without_election(self):
        ControllerSettings(lease_duration_seconds=1, renew_deadline_seconds=10).validate()

    def test_backoff_order(self):
        with pytest.raises(ConfigurationError, match="backoff"):
            ControllerSettings(backoff_base_seconds=5, backoff_max_seconds=1).validate()

    def test_bad_bind_address(self):
        with pytest.raises(ConfigurationError, match="bind address"):
            ControllerSettings(probe_bind_address="localhost").validate()

    def test_lock_name(self):
        assert ControllerSettings(lease_id="prod").lock_name == "k8s-duplicator-prod"
        assert ControllerSettings().lock_name == "k8s-duplicator"


class TestBindAddress:
    """Tests for parsing listen addresses."""

    def test_port_only(self):
        assert parse_bind_address(":8080") == ("0.0.0.0", 8080)

    def test_host_and_port(self):
        assert parse_bind_address("127.0.0.1:9000") == ("127.0.0.1", 9000)

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_bind_address("8080")
