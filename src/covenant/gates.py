"""Gate chain run before every handler.

The gates run in a fixed order and the first failure ends the chain:

1. API key: the ``api_key`` body field must name an enabled key
2. Signature: the ``signed`` body field must match the key's secret
3. Session: the ``session_token`` body field must name a live session
4. Parameters: the argument bag must satisfy the contract's rules

Gates 1 and 2 run only for contracts requiring an API key, gate 3 only for
contracts requiring a session. Parameter validation always runs.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from covenant.credentials import CredentialStore
from covenant.errors import API_KEY, SESSION, SIGNED, StandardError, make_standard_error
from covenant.logging import get_logger
from covenant.metrics import get_metrics
from covenant.models import Session
from covenant.registry import Contract
from covenant.signing import SIGNATURE_FIELD, verify
from covenant.validation import validate_params

logger = get_logger(__name__)

API_KEY_FIELD = "api_key"
SESSION_TOKEN_FIELD = "session_token"
TRANSPORT_FIELDS = frozenset({API_KEY_FIELD, SESSION_TOKEN_FIELD, SIGNATURE_FIELD})


@dataclass
class RequestContext:
    """State threaded through the gates for one request.

    ``payload`` is the JSON body exactly as received and is what the signature
    covers. ``args`` is the argument bag validated against the contract.
    """

    contract: Contract
    payload: Mapping[str, Any]
    args: Mapping[str, Any]
    session: Session | None = None
    data: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class GateResult:
    data: Mapping[str, Any]
    session: Session | None = None


Gate = Callable[[RequestContext], Awaitable[None]]


class GateChain:
    """Ordered, short-circuiting authentication and validation checks."""

    def __init__(self, credentials: CredentialStore) -> None:
        self.credentials = credentials

    async def api_key_gate(self, context: RequestContext) -> None:
        key = context.payload.get(API_KEY_FIELD)
        if key is None or key == "":
            raise make_standard_error(API_KEY.NONE_RECEIVED)
        await self.credentials.resolve_api_key(key)

    async def signature_gate(self, context: RequestContext) -> None:
        key = context.payload.get(API_KEY_FIELD)
        secret = await self.credentials.resolve_secret_for_signing(str(key or ""))
        if secret is None:
            raise make_standard_error(SIGNED.NO_SECRET)
        if not verify(context.payload, secret):
            raise make_standard_error(SIGNED.INVALID_SIGNATURE)

    async def session_gate(self, context: RequestContext) -> None:
        token = context.payload.get(SESSION_TOKEN_FIELD)
        if token is None or token == "":
            raise make_standard_error(SESSION.NO_TOKEN)
        context.session = await self.credentials.resolve_session(token)

    async def validation_gate(self, context: RequestContext) -> None:
        context.data = validate_params(context.args, context.contract.params)

    def gates_for(self, contract: Contract) -> list[tuple[str, Gate]]:
        gates: list[tuple[str, Gate]] = []
        if contract.authentication.api_key:
            gates.append(("api_key", self.api_key_gate))
            gates.append(("signature", self.signature_gate))
        if contract.authentication.session_token:
            gates.append(("session", self.session_gate))
        gates.append(("validation", self.validation_gate))
        return gates

    async def run(
        self,
        contract: Contract,
        payload: Mapping[str, Any],
        args: Mapping[str, Any],
    ) -> GateResult:
        """Run every gate ``contract`` needs.

        Raises:
            StandardError: from the first gate that rejects the request.
        """
        context = RequestContext(contract=contract, payload=payload, args=args)
        for name, gate in self.gates_for(contract):
            try:
                await gate(context)
            except StandardError as exc:
                get_metrics().gate_failures_total.inc(name, exc.kind.value)
                logger.info(
                    "gate_rejected",
                    gate=name,
                    contract=contract.name,
                    error_type=exc.kind.value,
                )
                raise
        data = context.data if context.data is not None else args
        return GateResult(data=data, session=context.session)
