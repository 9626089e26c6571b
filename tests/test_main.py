"""Tests for the command-line entry point."""

import logging
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from azure.core.exceptions import HttpResponseError

import main
from certrotation import logger as logger_module


def _props(name, days):
    return SimpleNamespace(
        name=name,
        expires_on=datetime.now(timezone.utc) + timedelta(days=days),
        x509_thumbprint=b"\x0a\x0b",
        version="v1",
        enabled=True,
    )


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    logging.getLogger("CertRotation").handlers.clear()
    logger_module._logger = None


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("vault:\n  name: kv-test\n")
    return str(path)


@pytest.fixture
def sdk(monkeypatch):
    client = MagicMock()
    client.vault_url = "https://kv-test.vault.azure.net/"
    client.list_properties_of_certificates.return_value = []
    monkeypatch.setattr(main, "connect", lambda url: client)
    return client


class TestMain:
    def test_missing_config(self, tmp_path, sdk):
        code = main.main(["--config", str(tmp_path / "absent.yaml"), "--no-color"])

        assert code == main.EXIT_CONFIG_ERROR

    def test_config_error_with_action_prints_envelope(self, tmp_path, sdk, capsys):
        code = main.main([
            "--config", str(tmp_path / "absent.yaml"), "--action", "check", "--no-color",
        ])

        assert code == main.EXIT_CONFIG_ERROR
        assert '"success": false' in capsys.readouterr().out

    def test_config_error_default_list_prints_envelope(self, tmp_path, sdk, capsys):
        code = main.main(["--config", str(tmp_path / "absent.yaml"), "--no-color"])

        out = capsys.readouterr().out
        assert code == main.EXIT_CONFIG_ERROR
        assert '"success": false' in out
        assert '"action": "list"' in out

    def test_config_error_in_sweep_prints_no_envelope(self, tmp_path, sdk, capsys):
        code = main.main(["--config", str(tmp_path / "absent.yaml"), "--sweep", "--no-color"])

        assert code == main.EXIT_CONFIG_ERROR
        assert '"success"' not in capsys.readouterr().out

    def test_zero_threshold_is_applied(self, config_path, sdk):
        sdk.list_properties_of_certificates.return_value = [_props("soon", days=10)]

        code = main.main(["--config", config_path, "--sweep", "--threshold", "0", "--no-color"])

        assert code == main.EXIT_SUCCESS
        sdk.begin_create_certificate.assert_not_called()

    def test_negative_threshold_rejected(self, config_path, sdk):
        code = main.main(["--config", config_path, "--sweep", "--threshold", "-1", "--no-color"])

        assert code == main.EXIT_CONFIG_ERROR
        sdk.list_properties_of_certificates.assert_not_called()

    def test_rotate_without_name(self, config_path, sdk, capsys):
        code = main.main(["--config", config_path, "--action", "rotate", "--no-color"])

        assert code == main.EXIT_FAILURE
        assert "certificateName is required" in capsys.readouterr().out
        sdk.begin_create_certificate.assert_not_called()

    def test_list_empty_vault(self, config_path, sdk, capsys):
        code = main.main(["--config", config_path, "--action", "list", "--no-color"])

        assert code == main.EXIT_SUCCESS
        assert '"count": 0' in capsys.readouterr().out

    def test_sweep_empty_vault(self, config_path, sdk):
        code = main.main(["--config", config_path, "--sweep", "--no-color"])

        assert code == main.EXIT_SUCCESS

    def test_sweep_listing_failure(self, config_path, sdk):
        sdk.list_properties_of_certificates.side_effect = HttpResponseError("403 Forbidden")

        code = main.main(["--config", config_path, "--sweep", "--no-color"])

        assert code == main.EXIT_FAILURE
