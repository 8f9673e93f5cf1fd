"""Tests for prioritized configuration resolution and gateway credentials."""

import pytest

from ragdesk.assistant.infrastructure import gateway_credentials_loader
from ragdesk.config import Settings
from ragdesk.config.resolution import (
    GATEWAY_CREDENTIAL_KEYS,
    GATEWAY_CREDENTIAL_POLICY,
    ConfigSource,
    gateway_credential_policy,
    is_populated,
    resolve_first_populated,
)
from ragdesk.core import ConfigurationException

ENV_VALUES = {"instance_id": "env-inst", "token": "env-tok", "client_token": "env-client"}


def rows(table):
    async def load(name):
        return table.get(name)
    return load


def source(name, values):
    async def load():
        return values
    return ConfigSource(name=name, load=load)


class TestIsPopulated:
    def test_requires_every_key(self):
        assert is_populated({"a": "1", "b": "2"}, ["a", "b"])
        assert not is_populated({"a": "1"}, ["a", "b"])

    def test_blank_strings_do_not_count(self):
        assert not is_populated({"a": "  "}, ["a"])

    def test_none_is_not_populated(self):
        assert not is_populated(None, ["a"])


class TestResolveFirstPopulated:
    @pytest.mark.asyncio
    async def test_first_populated_source_wins(self):
        resolved = await resolve_first_populated(
            [source("partial", {"a": "1"}), source("full", {"a": "2", "b": "3"}), source("later", {"a": "4", "b": "5"})],
            ["a", "b"],
        )

        assert resolved.source == "full"
        assert resolved.values == {"a": "2", "b": "3"}

    @pytest.mark.asyncio
    async def test_failing_source_is_skipped(self):
        async def broken():
            raise RuntimeError("database down")

        resolved = await resolve_first_populated(
            [ConfigSource(name="db", load=broken), source("env", {"a": "1"})],
            ["a"],
        )

        assert resolved.source == "env"

    @pytest.mark.asyncio
    async def test_nothing_populated_raises(self):
        with pytest.raises(ConfigurationException) as exc_info:
            await resolve_first_populated([source("one", None), source("two", {})], ["a"])

        assert exc_info.value.details["tried"] == ["one", "two"]


class TestGatewayCredentialPolicy:
    def test_default_order_matches_named_policy(self, settings):
        sources = gateway_credential_policy(rows({}), settings.gateway_provider_names, ENV_VALUES)

        assert tuple(s.name for s in sources) == GATEWAY_CREDENTIAL_POLICY

    @pytest.mark.asyncio
    async def test_primary_row_beats_legacy_row_and_env(self):
        table = {
            "zapi_whatsapp": {"instance_id": "primary", "token": "t", "client_token": "c"},
            "zapi": {"instance_id": "legacy", "token": "t", "client_token": "c"},
        }

        resolved = await resolve_first_populated(
            gateway_credential_policy(rows(table), ["zapi_whatsapp", "zapi"], ENV_VALUES),
            GATEWAY_CREDENTIAL_KEYS,
        )

        assert resolved.source == "db:zapi_whatsapp"
        assert resolved.values["instance_id"] == "primary"

    @pytest.mark.asyncio
    async def test_incomplete_primary_row_falls_through_to_legacy(self):
        table = {
            "zapi_whatsapp": {"instance_id": "primary", "token": "", "client_token": "c"},
            "zapi": {"instance_id": "legacy", "token": "t", "client_token": "c"},
        }

        resolved = await resolve_first_populated(
            gateway_credential_policy(rows(table), ["zapi_whatsapp", "zapi"], ENV_VALUES),
            GATEWAY_CREDENTIAL_KEYS,
        )

        assert resolved.source == "db:zapi"

    @pytest.mark.asyncio
    async def test_env_used_when_no_rows(self):
        resolved = await resolve_first_populated(
            gateway_credential_policy(rows({}), ["zapi_whatsapp", "zapi"], ENV_VALUES),
            GATEWAY_CREDENTIAL_KEYS,
        )

        assert resolved.source == "env"
        assert resolved.values["token"] == "env-tok"


class TestGatewayCredentialsLoader:
    @pytest.mark.asyncio
    async def test_env_only_without_repository(self):
        settings = Settings(
            zapi_instance_id="inst",
            zapi_token="tok",
            zapi_client_token="client",
            _env_file=None,
        )

        credentials = await gateway_credentials_loader(settings, None)()

        assert credentials.instance_id == "inst"
        assert credentials.source == "env"
        assert credentials.base_url == "https://api.z-api.io"

    @pytest.mark.asyncio
    async def test_missing_everything_raises(self):
        settings = Settings(zapi_instance_id="", zapi_token="", zapi_client_token="", _env_file=None)

        with pytest.raises(ConfigurationException):
            await gateway_credentials_loader(settings, None)()
