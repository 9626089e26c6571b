"""Tests for on-demand request parsing and handling."""

from datetime import datetime, timezone

import pytest

from certrotation.config_loader import CreatePolicyConfig
from certrotation.handler import (
    CheckRequest,
    CreateRequest,
    ListRequest,
    OnDemandRequestHandler,
    RotateRequest,
    ValidationError,
    parse_request,
)
from certrotation.keyvault import OperationStatus, UpstreamError
from certrotation.poller import PollPolicy
from conftest import FakeVault, make_cert


@pytest.fixture
def vault():
    now = datetime.now(timezone.utc)
    return FakeVault([
        make_cert("expired", -2, now=now),
        make_cert("soon", 10, now=now),
        make_cert("fine", 400, now=now),
    ])


@pytest.fixture
def handler(vault, make_poller):
    return OnDemandRequestHandler(
        vault,
        make_poller(vault),
        poll=PollPolicy(interval=2, max_wait=60),
        create_policy=CreatePolicyConfig(),
    )


class TestParseRequest:
    def test_defaults_to_list(self):
        assert parse_request({}) == ListRequest(threshold_days=30)

    def test_threshold_override(self):
        assert parse_request({"action": "check", "daysBeforeExpiry": "14"}) == \
            CheckRequest(threshold_days=14)

    def test_action_is_case_insensitive(self):
        assert parse_request({"action": "ROTATE", "certificateName": "a"}) == \
            RotateRequest(certificate_name="a")

    def test_create_requires_name(self):
        with pytest.raises(ValidationError, match="certificateName is required"):
            parse_request({"action": "create"})

    def test_create(self):
        assert parse_request({"action": "create", "certificateName": "new-cert"}) == \
            CreateRequest(certificate_name="new-cert")

    @pytest.mark.parametrize("name", ["", "   "])
    def test_rotate_blank_name(self, name):
        with pytest.raises(ValidationError):
            parse_request({"action": "rotate", "certificateName": name})

    def test_rotate_invalid_name(self):
        with pytest.raises(ValidationError, match="Invalid certificateName"):
            parse_request({"action": "rotate", "certificateName": "api.example.com"})

    def test_unknown_action(self):
        with pytest.raises(ValidationError, match="Unknown action 'delete'"):
            parse_request({"action": "delete"})

    @pytest.mark.parametrize("days", ["soon", "-1", "1000"])
    def test_invalid_threshold(self, days):
        with pytest.raises(ValidationError):
            parse_request({"action": "list", "daysBeforeExpiry": days})


class TestRotate:
    def test_missing_name_makes_no_vault_calls(self, handler, vault):
        status, body = handler.handle({"action": "rotate"})

        assert status == 400
        assert body["success"] is False
        assert "certificateName" in body["error"]
        assert body["action"] == "rotate"
        assert body["keyVault"] == "kv-test"
        assert "timestamp" in body
        assert vault.calls == []

    def test_unknown_certificate_is_not_found(self, handler, vault):
        status, body = handler.handle({"action": "rotate", "certificateName": "ghost"})

        assert status == 404
        assert body["success"] is False
        assert vault.submissions == []

    def test_rotates_named_certificate(self, handler, vault):
        status, body = handler.handle({"action": "rotate", "certificateName": "fine"})

        assert status == 200
        assert body["success"] is True
        assert body["certificateName"] == "fine"
        assert body["result"]["outcome"] == "ROTATED"
        assert body["result"]["oldThumbprint"] == "fine-v1"
        assert body["result"]["newThumbprint"] == "fine-v2"
        assert vault.submissions == ["fine"]

    def test_timeout_maps_to_gateway_timeout(self, handler, vault, clock):
        vault.poll_scripts["soon"] = [OperationStatus.IN_PROGRESS]

        status, body = handler.handle({"action": "rotate", "certificateName": "soon"})

        assert status == 504
        assert body["success"] is False
        assert body["result"]["outcome"] == "TIMED_OUT"
        assert sum(clock.sleeps) == 60

    def test_rejected_operation(self, handler, vault):
        vault.poll_scripts["soon"] = [OperationStatus.FAILED]

        status, body = handler.handle({"action": "rotate", "certificateName": "soon"})

        assert status == 502
        assert body["result"]["outcome"] == "FAILED"
        assert body["error"] == "Issuer rejected the request"


class TestListAndCheck:
    def test_list(self, handler, vault):
        status, body = handler.handle({"action": "list"})

        assert status == 200
        assert body["success"] is True
        assert body["count"] == 3
        assert body["thresholdDays"] == 30
        statuses = {c["name"]: c["status"] for c in body["certificates"]}
        assert statuses == {"expired": "EXPIRED", "soon": "EXPIRING_SOON", "fine": "OK"}
        assert vault.submissions == []

    def test_list_threshold_override(self, handler):
        _, body = handler.handle({"action": "list", "daysBeforeExpiry": 5})

        statuses = {c["name"]: c["status"] for c in body["certificates"]}
        assert statuses["soon"] == "OK"

    def test_check_buckets(self, handler, vault):
        status, body = handler.handle({"action": "check"})

        assert status == 200
        assert body["summary"] == {
            "expired": 1,
            "expiringSoon": 1,
            "ok": 1,
            "unknown": 0,
            "total": 3,
        }
        assert [c["name"] for c in body["expiringSoon"]] == ["soon"]
        assert body["message"] == "2 of 3 certificate(s) need rotation"
        assert vault.submissions == []

    def test_check_unknown_expiry(self, handler, vault):
        vault.certificates["fine"].expires_on = None

        _, body = handler.handle({"action": "check"})

        assert body["summary"]["unknown"] == 1
        assert body["unknown"][0]["name"] == "fine"

    def test_upstream_error(self, handler, vault):
        vault.list_error = UpstreamError("403 Forbidden")

        status, body = handler.handle({"action": "check"})

        assert status == 502
        assert body["success"] is False
        assert "403" in body["error"]

    def test_unexpected_error(self, handler, vault):
        vault.list_error = RuntimeError("socket closed")

        status, body = handler.handle({"action": "list"})

        assert status == 500
        assert body["success"] is False
        assert body["error"] == "RuntimeError: socket closed"


class TestCreate:
    def test_creates_self_signed_certificate(self, handler, vault):
        status, body = handler.handle({"action": "create", "certificateName": "brand-new"})

        assert status == 201
        assert body["result"]["outcome"] == "CREATED"
        policy = vault.submitted_policies["brand-new"]
        assert policy.subject == "CN=brand-new"
        assert policy.issuer_name == "Self"
        assert policy.validity_in_months == 12
        assert policy.key_type == "RSA"
        assert policy.key_size == 2048
        assert "1.3.6.1.5.5.7.3.1" in policy.enhanced_key_usage

    def test_existing_certificate_conflicts(self, handler, vault):
        status, body = handler.handle({"action": "create", "certificateName": "fine"})

        assert status == 409
        assert body["success"] is False
        assert vault.submissions == []

    def test_missing_name(self, handler, vault):
        status, _ = handler.handle({"action": "create"})

        assert status == 400
        assert vault.calls == []
