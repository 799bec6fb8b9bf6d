"""Dispatcher binding contracts to REST routes and the JSON-RPC endpoint.

Both transports share one pipeline: gate chain, handler call, envelope.
Every response is HTTP 200 with the body::

    {"requested": ..., "success": bool, "error": {...} | null, "data": ...}

This module is the only place where exceptions are turned into wire output.
"""

from __future__ import annotations

import inspect
import json
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from covenant.config import DEFAULT_API_ENDPOINT
from covenant.errors import REQUEST, SERVER_ERROR, StandardError, make_standard_error
from covenant.gates import TRANSPORT_FIELDS, GateChain
from covenant.logging import bind_request, get_logger
from covenant.metrics import get_metrics
from covenant.models import Envelope, ErrorBody
from covenant.registry import Contract, ContractRegistry

logger = get_logger(__name__)

RPC_METHOD_FIELD = "method"
RPC_ARGS_FIELD = "args"
RPC_HINT_FIELD = "hint"


def normalize_error(exc: BaseException) -> StandardError:
    """Pass standard errors through; wrap anything else as a server error."""
    if isinstance(exc, StandardError):
        return exc
    return make_standard_error(SERVER_ERROR, str(exc) or type(exc).__name__)


def success_envelope(requested: str | None, data: Any) -> Envelope:
    return Envelope(requested=requested, success=True, error=None, data=data)


def failure_envelope(
    requested: str | None,
    error: StandardError,
    received: Any = None,
) -> Envelope:
    return Envelope(
        requested=requested,
        success=False,
        error=ErrorBody(**error.to_dict()),
        data={"received": received} if received is not None else None,
    )


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def parse_json_body(raw: bytes) -> Any:
    """Decode a request body; an empty body is an empty argument bag.

    Raises:
        StandardError: ``malformedJSON`` for undecodable bodies, including
            the non-standard ``NaN`` and ``Infinity`` literals.
    """
    if not raw.strip():
        return {}
    try:
        return json.loads(raw, parse_constant=_reject_constant)
    except (ValueError, UnicodeDecodeError) as exc:
        raise make_standard_error(REQUEST.MALFORMED_JSON, str(exc)) from exc


def argument_bag(payload: Mapping[str, Any]) -> dict[str, Any]:
    """Strip credential fields from a REST body, leaving the handler arguments."""
    return {key: value for key, value in payload.items() if key not in TRANSPORT_FIELDS}


class Dispatcher:
    """Route requests to contracts and wrap every outcome in an envelope."""

    def __init__(
        self,
        registry: ContractRegistry,
        gate_chain: GateChain,
        *,
        debug: bool = False,
    ) -> None:
        self.registry = registry
        self.gate_chain = gate_chain
        self.debug = debug
        self.rpc_path = f"/{DEFAULT_API_ENDPOINT}"

    async def invoke(
        self,
        contract: Contract,
        payload: Mapping[str, Any],
        args: Mapping[str, Any],
    ) -> Any:
        """Run the gate chain for ``contract`` and call its handler."""
        result = await self.gate_chain.run(contract, payload, args)
        outcome = contract.handler({**result.data, "session": result.session})
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome

    async def dispatch_rest(self, contract: Contract, payload: Any) -> Envelope:
        """Dispatch a REST call whose whole body is the argument bag."""
        requested = contract.rest_path or contract.name

        async def run() -> Any:
            if not isinstance(payload, Mapping):
                raise make_standard_error(
                    REQUEST.MALFORMED_JSON, "The request body must be a JSON object"
                )
            return await self.invoke(contract, payload, argument_bag(payload))

        return await self._dispatch("rest", requested, payload, run)

    async def dispatch_rpc(self, payload: Any) -> Envelope:
        """Dispatch a ``{method, args}`` or ``{method, hint}`` call."""
        method = payload.get(RPC_METHOD_FIELD) if isinstance(payload, Mapping) else None
        method_name = method if isinstance(method, str) and method else None
        requested = method_name or self.rpc_path

        async def run() -> Any:
            if not isinstance(payload, Mapping):
                raise make_standard_error(
                    REQUEST.MALFORMED_JSON, "The request body must be a JSON object"
                )
            if method_name is None:
                raise make_standard_error(REQUEST.NO_METHOD_SUPPLIED)
            contract = self.registry.get(method_name)
            if contract is None:
                raise make_standard_error(REQUEST.NO_METHOD_FOUND, method_name)
            args = payload.get(RPC_ARGS_FIELD)
            if args is not None:
                if not isinstance(args, Mapping):
                    raise make_standard_error(
                        REQUEST.NO_ARGS, "args must be a JSON object"
                    )
                return await self.invoke(contract, payload, args)
            if payload.get(RPC_HINT_FIELD) and self.debug:
                return {"api_expects": contract.describe()}
            raise make_standard_error(REQUEST.NO_ARGS)

        return await self._dispatch("rpc", requested, payload, run)

    async def _dispatch(
        self,
        transport: str,
        requested: str | None,
        payload: Any,
        run: Callable[[], Awaitable[Any]],
    ) -> Envelope:
        metrics = get_metrics()
        bind_request(requested=requested, transport=transport)
        start = time.perf_counter()
        try:
            with metrics.request_duration_seconds.time(transport):
                data = await run()
            envelope = success_envelope(requested, data)
        except Exception as exc:
            if not isinstance(exc, StandardError):
                logger.error(
                    "handler_failed",
                    requested=requested,
                    error=str(exc),
                    error_class=type(exc).__name__,
                )
            error = normalize_error(exc)
            envelope = failure_envelope(
                requested, error, received=payload if self.debug else None
            )

        outcome = "success" if envelope.success else "failure"
        metrics.requests_total.inc(transport, outcome)
        log = logger.info if envelope.success else logger.warning
        log(
            "request_dispatched",
            requested=requested,
            transport=transport,
            success=envelope.success,
            error_type=envelope.error.type if envelope.error else None,
            duration_ms=round((time.perf_counter() - start) * 1000, 3),
        )
        return envelope

    def render(self, envelope: Envelope) -> JSONResponse:
        """Serialize ``envelope`` as an HTTP 200 JSON response."""
        try:
            return JSONResponse(content=jsonable_encoder(envelope.model_dump()), status_code=200)
        except (TypeError, ValueError) as exc:
            logger.error("envelope_unserializable", requested=envelope.requested, error=str(exc))
        error = make_standard_error(SERVER_ERROR, "Handler returned a non-JSON value")
        content = jsonable_encoder(failure_envelope(envelope.requested, error).model_dump())
        return JSONResponse(content=content, status_code=200)

    def _rest_endpoint(self, contract: Contract) -> Callable[[Request], Awaitable[JSONResponse]]:
        async def endpoint(request: Request) -> JSONResponse:
            try:
                payload = parse_json_body(await request.body())
            except StandardError as exc:
                return self.render(failure_envelope(contract.rest_path or contract.name, exc))
            return self.render(await self.dispatch_rest(contract, payload))

        endpoint.__name__ = f"rest_{contract.name.replace('.', '_')}"
        return endpoint

    def _rpc_endpoint(self) -> Callable[[Request], Awaitable[JSONResponse]]:
        async def endpoint(request: Request) -> JSONResponse:
            try:
                payload = parse_json_body(await request.body())
            except StandardError as exc:
                return self.render(failure_envelope(self.rpc_path, exc))
            return self.render(await self.dispatch_rpc(payload))

        return endpoint

    def bind(self, app: FastAPI, api_endpoint: str) -> None:
        """Seal the registry and add every REST route plus the RPC endpoint to ``app``."""
        self.registry.seal()
        self.rpc_path = f"/{api_endpoint.strip('/')}"
        for contract in self.registry.rest_contracts():
            if contract.rest_path is None or contract.method is None:
                continue
            app.add_api_route(
                contract.rest_path,
                self._rest_endpoint(contract),
                methods=[contract.method.upper()],
                name=contract.name,
                summary=contract.description,
                tags=[contract.service] if contract.service else None,
            )
        app.add_api_route(
            self.rpc_path,
            self._rpc_endpoint(),
            methods=["POST"],
            name="json_rpc",
            summary="JSON-RPC endpoint for every registered contract",
        )
        logger.info(
            "routes_bound",
            rest_routes=len(self.registry.rest_contracts()),
            contracts=len(self.registry),
            rpc_endpoint=api_endpoint,
        )
