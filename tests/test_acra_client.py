"""
Tests for the live ACRA registry client (HTTP mocked with respx).
"""

import asyncio
import httpx
import pytest
import respx
from src.services.registry.acra_client import RegistryClient, RegistryUnavailableError

BASE_URL = "https://acra.test/api"


def _client():
    return RegistryClient(base_url=BASE_URL, api_key="test-key", timeout=2.0)


def test_is_available_requires_url_and_key():
    assert _client().is_available()
    assert not RegistryClient(base_url=BASE_URL, api_key="").is_available()
    assert not RegistryClient(base_url="", api_key="test-key").is_available()


@respx.mock
def test_lookup_maps_registry_fields():
    route = respx.get(f"{BASE_URL}/entities/201234567A").mock(return_value=httpx.Response(200, json={
        "entityName": "ABC TRADING PTE. LTD.",
        "entityType": "LOCAL_COMPANY",
        "status": "LIVE",
        "gstRegistered": True,
        "registrationDate": "2020-01-15",
        "primaryActivity": "Wholesale Trade",
        "lastUpdated": "2024-05-01T00:00:00+00:00",
    }))

    result = asyncio.run(_client().lookup("201234567A"))

    assert route.called
    assert route.calls.last.request.headers["Authorization"] == "Bearer test-key"
    assert result.exists
    assert result.entity_name == "ABC TRADING PTE. LTD."
    assert result.gst_registered is True
    assert result.industry == "Wholesale Trade"
    assert result.last_updated == "2024-05-01T00:00:00+00:00"


@respx.mock
def test_not_found_is_a_result_not_an_error():
    respx.get(f"{BASE_URL}/entities/201299999Z").mock(return_value=httpx.Response(404))

    result = asyncio.run(_client().lookup("201299999Z"))

    assert result.is_valid is True
    assert result.exists is False


@respx.mock
def test_server_error_raises_unavailable():
    respx.get(f"{BASE_URL}/entities/201234567A").mock(return_value=httpx.Response(503))

    with pytest.raises(RegistryUnavailableError, match="503"):
        asyncio.run(_client().lookup("201234567A"))


@respx.mock
def test_network_error_raises_unavailable():
    respx.get(f"{BASE_URL}/entities/201234567A").mock(side_effect=httpx.ConnectError("connection refused"))

    with pytest.raises(RegistryUnavailableError):
        asyncio.run(_client().lookup("201234567A"))


@respx.mock
def test_invalid_json_raises_unavailable():
    respx.get(f"{BASE_URL}/entities/201234567A").mock(return_value=httpx.Response(200, text="<html>"))

    with pytest.raises(RegistryUnavailableError):
        asyncio.run(_client().lookup("201234567A"))


def test_lookup_without_configuration_raises():
    with pytest.raises(RegistryUnavailableError):
        asyncio.run(RegistryClient(base_url="", api_key="").lookup("201234567A"))
