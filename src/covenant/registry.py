"""Contract registry: the compiled, read-only view of every service endpoint.

Services describe their endpoints as plain data::

    ServiceDefinition(
        name="user",
        endpoints=[
            {
                "name": "user.create",
                "method": "post",
                "rest_path": "/users",
                "handler": "create_user",
                "params": [
                    {"param": "username", "required": True,
                     "validation": {"valid_email": True}},
                ],
            },
        ],
        handlers={"create_user": create_user},
    )

Each definition is merged over :data:`CONTRACT_DEFAULTS` and stored by its
logical name. The registry is filled at startup and sealed when the
dispatcher binds routes; it is never modified while requests are served.
"""

from __future__ import annotations

import copy
from collections.abc import Awaitable, Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from covenant.errors import SERVER_ERROR, ContractError, make_standard_error
from covenant.logging import get_logger
from covenant.validation import ParamRule

logger = get_logger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[Any] | Any]

HTTP_VERBS = frozenset({"get", "post", "put", "patch", "delete"})

CONTRACT_DEFAULTS: Mapping[str, Any] = MappingProxyType(
    {
        "name": "api.unimplemented",
        "service": "",
        "method": None,
        "rest_path": None,
        "description": "No description available for this endpoint",
        "handler": None,
        "authentication": {"api_key": False, "session_token": False},
        "params": [],
        "returns": [
            {"message": "The return schema for this method has not been described."}
        ],
    }
)


def unimplemented_handler(name: str) -> Handler:
    """Build the fail-safe handler bound when a contract's handler is missing."""

    async def handler(_: dict[str, Any]) -> Any:
        raise make_standard_error(SERVER_ERROR, f"No handler is bound to '{name}'")

    handler.__name__ = "unimplemented_handler"
    return handler


@dataclass(frozen=True)
class AuthRequirements:
    api_key: bool = False
    session_token: bool = False


@dataclass(frozen=True)
class Contract:
    """One compiled endpoint: routing, gates, parameter rules and handler."""

    name: str
    handler: Handler
    service: str = ""
    method: str | None = None
    rest_path: str | None = None
    description: str = CONTRACT_DEFAULTS["description"]
    authentication: AuthRequirements = field(default_factory=AuthRequirements)
    params: tuple[ParamRule, ...] = ()
    returns: tuple[Any, ...] = ()
    handler_name: str | None = None

    @property
    def is_rest(self) -> bool:
        return self.method is not None and self.rest_path is not None

    def describe(self) -> dict[str, Any]:
        """Return the documented shape of this contract, without the handler."""
        return {
            "name": self.name,
            "service": self.service,
            "method": self.method,
            "rest_path": self.rest_path,
            "description": self.description,
            "handler": self.handler_name,
            "authentication": {
                "api_key": self.authentication.api_key,
                "session_token": self.authentication.session_token,
            },
            "params": [rule.describe() for rule in self.params],
            "returns": copy.deepcopy(list(self.returns)),
        }


@dataclass(frozen=True)
class ServiceDefinition:
    """A named group of endpoint definitions and the handlers they reference."""

    name: str
    endpoints: Sequence[Mapping[str, Any]]
    handlers: Mapping[str, Handler] = field(default_factory=dict)


def _normalize_path(path: Any, name: str) -> str | None:
    if path is None:
        return None
    if not isinstance(path, str) or not path.strip("/ "):
        raise ContractError(f"Contract '{name}' has an invalid rest_path: {path!r}")
    return "/" + path.strip().lstrip("/")


def build_contract(
    definition: Mapping[str, Any],
    handler: Handler | None,
    *,
    service: str = "",
) -> Contract:
    """Merge ``definition`` over the defaults and compile it into a :class:`Contract`."""
    unknown = set(definition) - set(CONTRACT_DEFAULTS)
    if unknown:
        raise ContractError(f"Unknown contract fields: {sorted(unknown)}")
    merged: dict[str, Any] = copy.deepcopy(dict(CONTRACT_DEFAULTS))
    merged["service"] = service
    merged.update(definition)

    name = merged["name"]
    if not isinstance(name, str) or not name.strip():
        raise ContractError("Contracts require a non-empty logical 'name'")

    rest_path = _normalize_path(merged["rest_path"], name)
    method = merged["method"]
    if rest_path is not None:
        method = (method or "post").lower()
        if method not in HTTP_VERBS:
            raise ContractError(f"Contract '{name}' has an unsupported method: {method!r}")
    else:
        method = None

    auth = merged["authentication"] or {}
    if not isinstance(auth, Mapping):
        raise ContractError(f"Contract '{name}' authentication must be a mapping")
    params = merged["params"] or []
    if not isinstance(params, Sequence) or isinstance(params, str):
        raise ContractError(f"Contract '{name}' params must be a list")

    handler_ref = merged["handler"]
    handler_name = handler_ref if isinstance(handler_ref, str) else None
    if handler is None and callable(handler_ref):
        handler = handler_ref
        handler_name = getattr(handler_ref, "__name__", None)
    if handler is None:
        logger.warning("contract_handler_missing", contract=name, handler=handler_name)
        handler = unimplemented_handler(name)

    return Contract(
        name=name,
        handler=handler,
        service=str(merged["service"] or ""),
        method=method,
        rest_path=rest_path,
        description=str(merged["description"]),
        authentication=AuthRequirements(
            api_key=bool(auth.get("api_key", False)),
            session_token=bool(auth.get("session_token", False)),
        ),
        params=tuple(ParamRule.from_definition(rule) for rule in params),
        returns=tuple(merged["returns"] or ()),
        handler_name=handler_name,
    )


class ContractRegistry:
    """Global mapping from logical method name to compiled contract."""

    def __init__(self) -> None:
        self._contracts: dict[str, Contract] = {}
        self._mappings: dict[str, str | None] = {}
        self._routes: dict[tuple[str, str], str] = {}
        self._sealed = False

    @property
    def contracts(self) -> Mapping[str, Contract]:
        return MappingProxyType(self._contracts)

    @property
    def mappings(self) -> Mapping[str, str | None]:
        """Logical name to ``"VERB /path"`` (or ``None`` for RPC-only contracts)."""
        return MappingProxyType(self._mappings)

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> None:
        self._sealed = True

    def __contains__(self, name: object) -> bool:
        return name in self._mappings

    def __len__(self) -> int:
        return len(self._contracts)

    def __iter__(self) -> Iterator[Contract]:
        return iter(self._contracts.values())

    def get(self, name: str) -> Contract | None:
        return self._contracts.get(name)

    def rest_contracts(self) -> list[Contract]:
        return [contract for contract in self._contracts.values() if contract.is_rest]

    def add(self, contract: Contract) -> Contract:
        """Add a compiled contract.

        Raises:
            ContractError: if the registry is sealed, or the logical name or
                REST route is already taken.
        """
        if self._sealed:
            raise ContractError(f"Cannot register '{contract.name}': registry is sealed")
        if contract.name in self._contracts:
            raise ContractError(f"Duplicate logical method name '{contract.name}'")
        route: str | None = None
        verb, path = contract.method, contract.rest_path
        if verb is not None and path is not None:
            route = f"{verb.upper()} {path}"
            if (verb, path) in self._routes:
                raise ContractError(
                    f"Route {route} is already bound to '{self._routes[(verb, path)]}'"
                )
            self._routes[(verb, path)] = contract.name
        self._contracts[contract.name] = contract
        self._mappings[contract.name] = route
        logger.debug("contract_registered", contract=contract.name, route=route)
        return contract

    def register(
        self,
        definition: Mapping[str, Any],
        handler: Handler | None = None,
        *,
        service: str = "",
    ) -> Contract:
        """Compile ``definition`` with ``handler`` and add it."""
        return self.add(build_contract(definition, handler, service=service))

    def register_service(self, service: ServiceDefinition) -> list[Contract]:
        """Register every endpoint of ``service``.

        Endpoints whose handler name is missing from the handler table are
        bound to a handler that always fails with a server error, and the
        remaining endpoints still register.
        """
        registered: list[Contract] = []
        for endpoint in service.endpoints:
            handler_ref = endpoint.get("handler")
            handler: Handler | None = None
            if isinstance(handler_ref, str):
                handler = service.handlers.get(handler_ref)
            elif callable(handler_ref):
                handler = handler_ref
            registered.append(self.register(endpoint, handler, service=service.name))
        logger.info("service_registered", service=service.name, endpoints=len(registered))
        return registered
