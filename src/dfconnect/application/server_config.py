"""Server-side session configuration.

Client-side session config (``ConnectClient.set_config``) rides along with
every request. This module instead reads and changes the configuration
the server holds for the session, one Config request per call.
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Mapping
from typing import Any

from dfconnect.application.execution_engine import server_error
from dfconnect.application.retry import RetryPolicy
from dfconnect.application.session import Session
from dfconnect.domain.errors import ConnectError, ProtocolError
from dfconnect.infrastructure.logging import get_logger
from dfconnect.infrastructure.metrics import MetricsRegistry, get_metrics
from dfconnect.infrastructure.tracing import trace_span
from dfconnect.ports.outbound import wire
from dfconnect.ports.outbound.transport import Transport

logger = get_logger(__name__)


def _config_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ServerConfig:
    """Session configuration as held by the server.

    Example:
        >>> await client.conf.set({"spark.sql.shuffle.partitions": 8})
        >>> await client.conf.get("spark.sql.shuffle.partitions")
        '8'
    """

    def __init__(
        self,
        session: Session,
        transport: Transport,
        retry_policy: RetryPolicy | None = None,
        client_type: str = "",
        metrics: MetricsRegistry | None = None,
    ) -> None:
        self.session = session
        self.transport = transport
        self.retry_policy = retry_policy or RetryPolicy()
        self.client_type = client_type
        self.metrics = metrics or get_metrics()

    async def _request(
        self,
        operation: str,
        pairs: Iterable[tuple[str, str | None]] = (),
        prefix: str | None = None,
    ) -> wire.ConfigResponse:
        snapshot = self.session.snapshot_context()
        request = wire.ConfigRequest(
            session_id=snapshot.session_id,
            user_context=snapshot.user_context.to_wire(),
            operation=operation,
            client_type=self.client_type,
            pairs=tuple(wire.KeyValueMsg(key=k, value=v) for k, v in pairs),
            prefix=prefix,
        )
        attempts = 0

        async def attempt() -> wire.ConfigResponse:
            nonlocal attempts
            attempts += 1
            if attempts > 1:
                self.metrics.retries_total.labels(rpc="config").inc()
            return await self.transport.config(request)

        started = time.monotonic()
        with trace_span(
            "dfconnect.config",
            {"dfconnect.session_id": snapshot.session_id, "dfconnect.config": operation},
        ):
            try:
                response = await self.retry_policy.call(attempt, rpc="config")
                if response.session_id != snapshot.session_id:
                    raise ProtocolError(
                        f"Config response for session {response.session_id!r}, "
                        f"expected {snapshot.session_id!r}"
                    )
                if response.error is not None:
                    raise server_error(response.error)
            except ConnectError as e:
                logger.info("config_failed", operation=operation, error=str(e))
                raise
            finally:
                self.metrics.rpc_latency_seconds.labels(rpc="config").observe(
                    time.monotonic() - started
                )
        for warning in response.warnings:
            logger.warning("config_warning", operation=operation, warning=warning)
        return response

    async def set(self, values: Mapping[str, Any]) -> None:
        """Set keys on the server. Booleans are sent as "true"/"false"."""
        await self._request("set", [(k, _config_value(v)) for k, v in values.items()])

    async def get(self, key: str, default: str | None = None) -> str | None:
        """Read one key.

        Without a default the key must exist; with one, the default is
        returned for a missing key.

        Raises:
            PlanAnalysisError: If the key is unknown and no default is given.
        """
        if default is None:
            response = await self._request("get", [(key, None)])
        else:
            response = await self._request("get_with_default", [(key, default)])
        return self._single(response, key)

    async def get_option(self, key: str) -> str | None:
        """Read one key, None if it is not set."""
        return self._single(await self._request("get_option", [(key, None)]), key)

    async def get_all(self, prefix: str | None = None) -> dict[str, str | None]:
        response = await self._request("get_all", prefix=prefix)
        return {pair.key: pair.value for pair in response.pairs}

    async def unset(self, *keys: str) -> None:
        await self._request("unset", [(key, None) for key in keys])

    async def is_modifiable(self, key: str) -> bool:
        """Whether the key may be changed at runtime."""
        return self._single(await self._request("is_modifiable", [(key, None)]), key) == "true"

    @staticmethod
    def _single(response: wire.ConfigResponse, key: str) -> str | None:
        for pair in response.pairs:
            if pair.key == key:
                return pair.value
        raise ProtocolError(f"Config response does not mention {key!r}")
