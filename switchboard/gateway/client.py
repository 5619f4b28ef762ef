"""
Gateway client.

Public façade of the integration gateway. One ``invoke`` call moves
through these states, strictly in order:

1. fetch the credential (fresh snapshot, refuse missing/inactive)
2. obtain a session from the cache, authenticating on a miss (single-flight)
3. execute the operation through the endpoint prober, memoized candidate first
4. on an expired session: invalidate it and go back to 2, exactly once

Every other failure is surfaced to the caller without retry, tagged with
the provider id and operation name.
"""

import asyncio
import time
from typing import Any, Dict, Optional

from switchboard.config.settings import GatewayConfig, SwitchboardConfig
from switchboard.core.credentials import CredentialStore
from switchboard.core.models import Credential, Session
from switchboard.exceptions import (
    AuthExpiredError,
    AuthFailedError,
    CredentialNotFoundError,
    EndpointNotFoundError,
    GatewayError,
    GatewayTimeoutError,
    ProviderNotRegisteredError,
)
from switchboard.gateway.cache import SessionCache, SessionCacheConfig
from switchboard.gateway.diagnostics import Diagnostics
from switchboard.gateway.prober import CandidateMemo, EndpointProber
from switchboard.logging_config import (
    get_logger,
    invocation_scope,
    log_authentication,
    log_gateway_invocation,
)
from switchboard.providers.base import Operation, Provider
from switchboard.providers.registry import ProviderRegistry, build_registry
from switchboard.transport import HttpTransport

logger = get_logger(__name__)


class _InvocationState:
    """Bookkeeping of one invoke() call."""

    def __init__(self):
        self.retried = False
        self.candidate: Optional[str] = None


class GatewayClient:
    """
    Integration gateway façade.

    Example::

        async with GatewayClient(store, registry) as gateway:
            jobs = await gateway.invoke("bacula-main", "listJobs", {"limit": 20})
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        registry: ProviderRegistry,
        config: Optional[GatewayConfig] = None,
        transport: Optional[HttpTransport] = None,
        session_cache: Optional[SessionCache] = None,
    ):
        """
        Initialize GatewayClient.

        Args:
            credential_store: Source of credential snapshots
            registry: Registered providers
            config: Gateway settings (timeouts, default TTL, cache size)
            transport: HTTP transport (created from config if omitted)
            session_cache: Session cache (created from config if omitted)
        """
        self.config = config or GatewayConfig()
        self.credential_store = credential_store
        self.registry = registry
        self.transport = transport or HttpTransport(
            user_agent=self.config.user_agent,
            verify_ssl=self.config.verify_ssl,
            max_connections=self.config.max_connections,
        )
        self.session_cache = session_cache or SessionCache(
            SessionCacheConfig(max_size=self.config.max_sessions)
        )
        self.prober = EndpointProber(self.transport)
        self.memo = CandidateMemo()

        logger.info(f"GatewayClient initialized with {len(registry)} providers")

    @classmethod
    def from_config(cls, config: SwitchboardConfig) -> "GatewayClient":
        """Gateway serving every integration declared in ``config``."""
        return cls(
            credential_store=config.credential_store(),
            registry=build_registry(config.integrations, config.gateway),
            config=config.gateway,
        )

    async def invoke(
        self,
        provider_id: str,
        operation: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """
        Execute a logical operation against a provider.

        Args:
            provider_id: Integration identifier
            operation: Logical operation name
            params: Operation parameters
            timeout: Deadline for the whole call in seconds (config default if None)

        Returns:
            Decoded payload of the first valid endpoint candidate

        Raises:
            GatewayError: One of the taxonomy subclasses, tagged with
                provider id and operation
        """
        deadline = timeout if timeout is not None else self.config.invoke_timeout_seconds
        state = _InvocationState()
        started = time.monotonic()

        with invocation_scope():
            try:
                result = await asyncio.wait_for(
                    self._invoke(provider_id, operation, params, state),
                    timeout=deadline,
                )
            except asyncio.TimeoutError:
                error = GatewayTimeoutError(
                    f"Invocation did not complete within {deadline}s",
                    provider_id=provider_id,
                    operation=operation,
                    diagnostics={"timeout_seconds": deadline},
                )
                self._log_outcome(provider_id, operation, started, state, error)
                raise error from None
            except GatewayError as e:
                e.with_context(provider_id, operation)
                self._log_outcome(provider_id, operation, started, state, e)
                raise

            self._log_outcome(provider_id, operation, started, state)
        return result

    async def _invoke(
        self,
        provider_id: str,
        operation_name: str,
        params: Optional[Dict[str, Any]],
        state: _InvocationState,
    ) -> Any:
        credential = await self.fetch_credential(provider_id)
        provider = self.resolve_provider(provider_id)
        operation = provider.get_operation(operation_name)
        if operation is None:
            raise EndpointNotFoundError(
                f"Provider '{provider_id}' has no operation '{operation_name}'",
                diagnostics={"available": sorted(provider.operations)},
            )

        session = await self.obtain_session(provider_id, provider, credential)
        try:
            return await self._execute(provider_id, provider, credential, session, operation, params, state)
        except AuthExpiredError:
            await self.session_cache.invalidate(provider_id, credential, session)
            logger.info(f"Session for {provider_id} rejected, re-authenticating once")

        state.retried = True
        session = await self.obtain_session(provider_id, provider, credential)
        try:
            return await self._execute(provider_id, provider, credential, session, operation, params, state)
        except AuthExpiredError:
            # Second rejection within one call is terminal
            await self.session_cache.invalidate(provider_id, credential, session)
            raise

    async def _execute(
        self,
        provider_id: str,
        provider: Provider,
        credential: Credential,
        session: Session,
        operation: Operation,
        params: Optional[Dict[str, Any]],
        state: _InvocationState,
    ) -> Any:
        preferred = self.memo.get(provider_id, operation.name)
        try:
            result = await self.prober.execute(
                provider, credential, session, operation, params, preferred_index=preferred
            )
        except AuthExpiredError:
            raise
        except GatewayError:
            # The memoized candidate did not answer; probe in priority order next time
            if preferred is not None:
                self.memo.forget(provider_id, operation.name)
            raise

        if result.candidate_index != preferred:
            self.memo.remember(provider_id, operation.name, result.candidate_index)
        state.candidate = result.candidate.template
        return result.payload

    async def fetch_credential(self, provider_id: str) -> Credential:
        """
        Read a fresh credential snapshot.

        Raises:
            AuthFailedError: If the credential is missing, inactive or unreadable
        """
        try:
            credential = await self.credential_store.get_credential(provider_id)
        except CredentialNotFoundError as e:
            raise AuthFailedError(str(e)) from e
        except Exception as e:
            logger.error(f"Credential store failed for {provider_id}: {e}", exc_info=True)
            raise AuthFailedError(
                f"Credential store failed: {e}",
                diagnostics={"reason": type(e).__name__},
            ) from e

        if not credential.active:
            raise AuthFailedError(f"Integration '{provider_id}' is inactive")
        return credential

    def resolve_provider(self, provider_id: str) -> Provider:
        """
        Registered provider for ``provider_id``.

        Raises:
            EndpointNotFoundError: If nothing is registered under the id
        """
        try:
            return self.registry.get(provider_id)
        except ProviderNotRegisteredError as e:
            raise EndpointNotFoundError(str(e)) from e

    async def obtain_session(
        self,
        provider_id: str,
        provider: Provider,
        credential: Credential,
    ) -> Session:
        """Cached session for the credential, authenticating single-flight on a miss."""
        return await self.session_cache.get_or_authenticate(
            provider_id,
            credential,
            lambda: self.authenticate(provider_id, provider, credential),
        )

    async def authenticate(
        self,
        provider_id: str,
        provider: Provider,
        credential: Credential,
    ) -> Session:
        """
        Run the provider's authenticator with the configured upper bound.

        The returned session is not cached here; callers decide where it goes.

        Raises:
            AuthFailedError: On any authentication failure, including timeout
        """
        limit = self.config.auth_timeout_seconds
        try:
            session = await asyncio.wait_for(
                provider.authenticator.authenticate(credential, self.transport),
                timeout=limit,
            )
        except asyncio.TimeoutError as e:
            log_authentication(logger, provider_id, success=False, reason="timeout")
            raise AuthFailedError(
                f"Authentication did not complete within {limit}s",
                diagnostics={"timed_out": True},
            ) from e
        except AuthFailedError as e:
            log_authentication(logger, provider_id, success=False, reason=e.detail)
            raise
        except Exception as e:
            logger.error(f"Authenticator for {provider_id} raised {type(e).__name__}: {e}", exc_info=True)
            log_authentication(logger, provider_id, success=False, reason=type(e).__name__)
            raise AuthFailedError(
                f"Authentication failed unexpectedly: {type(e).__name__}: {e}",
                diagnostics={"reason": type(e).__name__},
            ) from e

        log_authentication(
            logger,
            provider_id,
            success=True,
            session_kind=session.kind.value,
            expires_at=session.expires_at.isoformat() if session.expires_at else None,
        )
        return session

    async def run_diagnostics(self, provider_id: str) -> Dict[str, Any]:
        """JSON-serializable diagnostics report for ``provider_id``."""
        report = await Diagnostics(self).run(provider_id)
        return report.to_dict()

    def _log_outcome(
        self,
        provider_id: str,
        operation: str,
        started: float,
        state: _InvocationState,
        error: Optional[GatewayError] = None,
    ) -> None:
        duration_ms = round((time.monotonic() - started) * 1000, 1)
        if error is None:
            log_gateway_invocation(
                logger, provider_id, operation, "success", duration_ms,
                retried=state.retried, candidate=state.candidate,
            )
        else:
            log_gateway_invocation(
                logger, provider_id, operation, "failed", duration_ms,
                retried=state.retried, error_tag=error.tag.value, detail=error.detail,
            )

    async def close(self) -> None:
        """Close the HTTP transport. Cached sessions are simply dropped."""
        await self.transport.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
