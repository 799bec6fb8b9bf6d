"""Contract registry tests."""

from __future__ import annotations

from typing import Any

import pytest

from covenant.errors import ContractError, ErrorKind, StandardError
from covenant.registry import (
    CONTRACT_DEFAULTS,
    ContractRegistry,
    ServiceDefinition,
    build_contract,
)


async def _noop(request: dict[str, Any]) -> dict[str, Any]:
    return {}


def test_defaults_fill_missing_fields() -> None:
    contract = build_contract({"name": "thing.get"}, _noop)

    assert contract.method is None
    assert contract.rest_path is None
    assert contract.is_rest is False
    assert contract.description == CONTRACT_DEFAULTS["description"]
    assert contract.authentication.api_key is False
    assert contract.authentication.session_token is False
    assert contract.params == ()
    assert contract.returns == tuple(CONTRACT_DEFAULTS["returns"])


def test_rest_path_is_normalized_and_method_defaults_to_post() -> None:
    contract = build_contract({"name": "thing.create", "rest_path": "things"}, _noop)
    assert contract.rest_path == "/things"
    assert contract.method == "post"
    assert contract.is_rest is True


def test_method_without_rest_path_is_rpc_only() -> None:
    contract = build_contract({"name": "thing.list", "method": "get"}, _noop)
    assert contract.method is None


@pytest.mark.parametrize(
    "definition",
    [
        {"name": ""},
        {"name": "thing.x", "unknown_field": True},
        {"name": "thing.x", "rest_path": "/things", "method": "fetch"},
        {"name": "thing.x", "rest_path": "/"},
        {"name": "thing.x", "authentication": "yes"},
        {"name": "thing.x", "params": "username"},
        {"name": "thing.x", "params": [{"param": "a", "validation": {"bogus": 1}}]},
    ],
)
def test_invalid_definitions_fail_at_build_time(definition: dict[str, Any]) -> None:
    with pytest.raises(ContractError):
        build_contract(definition, _noop)


def test_defaults_are_not_shared_between_contracts() -> None:
    first = build_contract({"name": "a.one"}, _noop)
    first.returns[0]["message"] = "changed"
    second = build_contract({"name": "a.two"}, _noop)
    assert second.returns[0]["message"] != "changed"
    assert CONTRACT_DEFAULTS["returns"][0]["message"] != "changed"


@pytest.mark.asyncio
async def test_missing_handler_binds_failing_default() -> None:
    contract = build_contract({"name": "thing.orphan", "handler": "gone"}, None)
    assert contract.handler_name == "gone"
    with pytest.raises(StandardError) as excinfo:
        await contract.handler({})
    assert excinfo.value.kind is ErrorKind.INTERNAL_ERROR
    assert "thing.orphan" in excinfo.value.detail


def test_callable_handler_in_definition() -> None:
    contract = build_contract({"name": "thing.inline", "handler": _noop}, None)
    assert contract.handler is _noop
    assert contract.handler_name == "_noop"


def test_registry_mappings_and_lookup() -> None:
    registry = ContractRegistry()
    registry.register({"name": "thing.create", "rest_path": "/things"}, _noop)
    registry.register({"name": "thing.count"}, _noop)

    assert "thing.create" in registry
    assert len(registry) == 2
    assert registry.mappings == {"thing.create": "POST /things", "thing.count": None}
    assert [c.name for c in registry.rest_contracts()] == ["thing.create"]
    assert registry.get("thing.missing") is None


def test_duplicate_name_is_rejected() -> None:
    registry = ContractRegistry()
    registry.register({"name": "thing.create"}, _noop)
    with pytest.raises(ContractError, match="Duplicate"):
        registry.register({"name": "thing.create"}, _noop)


def test_duplicate_route_is_rejected() -> None:
    registry = ContractRegistry()
    registry.register({"name": "thing.create", "rest_path": "/things"}, _noop)
    with pytest.raises(ContractError, match="POST /things"):
        registry.register({"name": "thing.make", "rest_path": "things"}, _noop)
    assert "thing.make" not in registry


def test_same_path_with_different_verbs_is_allowed() -> None:
    registry = ContractRegistry()
    registry.register({"name": "thing.create", "rest_path": "/things"}, _noop)
    registry.register({"name": "thing.replace", "rest_path": "/things", "method": "PUT"}, _noop)
    assert registry.mappings["thing.replace"] == "PUT /things"


def test_sealed_registry_rejects_additions() -> None:
    registry = ContractRegistry()
    registry.seal()
    with pytest.raises(ContractError, match="sealed"):
        registry.register({"name": "late.addition"}, _noop)


def test_register_service_resolves_handlers_by_name() -> None:
    service = ServiceDefinition(
        name="thing",
        endpoints=[
            {"name": "thing.create", "handler": "create"},
            {"name": "thing.delete", "handler": "delete"},
        ],
        handlers={"create": _noop},
    )
    registry = ContractRegistry()
    contracts = registry.register_service(service)

    assert [c.name for c in contracts] == ["thing.create", "thing.delete"]
    assert registry.get("thing.create").handler is _noop
    assert registry.get("thing.delete").handler.__name__ == "unimplemented_handler"
    assert all(c.service == "thing" for c in contracts)


def test_describe_omits_handler_callable() -> None:
    contract = build_contract(
        {
            "name": "thing.create",
            "rest_path": "/things",
            "handler": "create",
            "authentication": {"api_key": True},
            "params": [{"param": "title", "required": True, "validation": {"max_length": 5}}],
        },
        _noop,
        service="thing",
    )
    assert contract.describe() == {
        "name": "thing.create",
        "service": "thing",
        "method": "post",
        "rest_path": "/things",
        "description": CONTRACT_DEFAULTS["description"],
        "handler": "create",
        "authentication": {"api_key": True, "session_token": False},
        "params": [{"param": "title", "required": True, "validation": {"max_length": 5}}],
        "returns": list(CONTRACT_DEFAULTS["returns"]),
    }
