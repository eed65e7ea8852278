"""Provisioning transition function.

:class:`ProvisioningStateMachine` maps ``(state, session, event)`` to a
:class:`Step`: the next state, the (possibly replaced) session, an optional
event to process next and an optional retry timer.  It keeps no state of its
own; :class:`~devlink.services.provisioning.agent.DeviceAgent` owns the
current state and feeds events in one at a time.
"""
from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar, Union

from devlink.services.credentials import CredentialKind
from devlink.services.crypto import KeyMaterialGenerator, is_valid_certificate
from devlink.services.errors import (
    CredentialNotFoundError,
    CredentialStoreError,
    PairingTransportError,
    SessionStartError,
)
from devlink.services.logging import session_logger
from devlink.services.pairing import (
    DEFAULT_PROTOCOL,
    PairingClient,
    PairingResponse,
    extract_broker_url,
    extract_certificate,
)

from .enums import Action, ProvisioningState
from .retry import FixedDelay, RetryPolicy
from .session import Session

__all__ = ["Internal", "StateTimeout", "Event", "Timer", "Step", "ProvisioningStateMachine"]

_log = logging.getLogger("devlink.provisioning")

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Internal:
    action: Action
    attempt: int = 1


@dataclass(frozen=True, slots=True)
class StateTimeout:
    state: ProvisioningState
    action: Action
    attempt: int = 1
    generation: int = 0


Event = Union[Internal, StateTimeout]


@dataclass(frozen=True, slots=True)
class Timer:
    delay: float
    action: Action
    attempt: int


@dataclass(frozen=True, slots=True)
class Step:
    state: ProvisioningState
    session: Session
    next_event: Internal | None = None
    timer: Timer | None = None


Handler = Callable[[Session, Internal], Awaitable[Step]]


class ProvisioningStateMachine:
    def __init__(
        self,
        pairing: PairingClient,
        *,
        generator: KeyMaterialGenerator | None = None,
        validator: Callable[[bytes], bool] = is_valid_certificate,
        retry: RetryPolicy | None = None,
        store_timeout: float = 10.0,
        request_timeout: float = 30.0,
        protocol: str = DEFAULT_PROTOCOL,
    ) -> None:
        self._pairing = pairing
        self._generator = generator or KeyMaterialGenerator()
        self._validator = validator
        self._retry = retry or FixedDelay()
        self._store_timeout = store_timeout
        self._request_timeout = request_timeout
        self._protocol = protocol
        # one worker: a write that outlived its timeout finishes before the next one starts
        self._store_worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="devlink-store")
        self._handlers: dict[tuple[ProvisioningState, Action], Handler] = {
            (ProvisioningState.NO_KEYPAIR, Action.GENERATE_KEYPAIR): self._generate_keypair,
            (ProvisioningState.NO_CERTIFICATE, Action.REQUEST_CERTIFICATE): self._request_certificate,
            (ProvisioningState.WAITING_FOR_INFO, Action.REQUEST_INFO): self._request_info,
        }

    def close(self) -> None:
        """Release the store worker. A write that is still running is left to finish."""

        self._store_worker.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Bounded collaborator calls
    # ------------------------------------------------------------------
    async def _store(self, fn: Callable[..., T], *args: Any) -> T:
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(loop.run_in_executor(self._store_worker, fn, *args), timeout=self._store_timeout)
        except asyncio.TimeoutError as exc:
            raise CredentialStoreError(f"{getattr(fn, '__name__', 'store call')} timed out after {self._store_timeout}s") from exc

    async def _remote(self, call: Awaitable[PairingResponse]) -> PairingResponse:
        try:
            return await asyncio.wait_for(call, timeout=self._request_timeout)
        except asyncio.TimeoutError as exc:
            raise PairingTransportError(f"no response after {self._request_timeout}s") from exc

    def _retry_step(self, state: ProvisioningState, session: Session, event: Internal, delay: float) -> Step:
        return Step(state, session, timer=Timer(delay=delay, action=event.action, attempt=event.attempt + 1))

    def recover_step(self, state: ProvisioningState, session: Session, event: Event) -> Step:
        """Schedule a retry of ``event`` after a step failed in an unforeseen way."""

        try:
            delay = self._retry.delay(event.action, event.attempt)
        except ValueError:
            return Step(state, session)
        return self._retry_step(state, session, Internal(event.action, event.attempt), delay)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------
    async def initial_step(self, session: Session, *, known_broker_url: str | None = None) -> Step:
        """Pick the state a fresh session starts in.

        Only a failing keypair check is fatal; every certificate problem is
        folded into ``NO_CERTIFICATE``.
        """

        log = session_logger(_log, session.client_id)
        session = session.with_broker_url(None)
        try:
            has_keypair = await self._store(session.store.has_keypair, session.store_handle)
        except CredentialStoreError as exc:
            log.error("Cannot check credential storage for a keypair: %s", exc)
            raise SessionStartError(f"{session.client_id}: keypair check failed: {exc}") from exc

        if not has_keypair:
            log.info("No keypair in credential storage")
            return Step(ProvisioningState.NO_KEYPAIR, session, Internal(Action.GENERATE_KEYPAIR))

        request_certificate = Step(ProvisioningState.NO_CERTIFICATE, session, Internal(Action.REQUEST_CERTIFICATE))
        try:
            pem_certificate = await self._store(session.store.fetch, CredentialKind.CERTIFICATE, session.store_handle)
        except CredentialNotFoundError:
            log.info("No certificate in credential storage")
            return request_certificate
        except CredentialStoreError as exc:
            log.warning("Cannot read stored certificate: %s", exc)
            return request_certificate

        if not self._validator(pem_certificate):
            # an invalid or nearly expired certificate is treated like a missing one
            log.info("Stored certificate is invalid or about to expire")
            return request_certificate

        if known_broker_url:
            return Step(ProvisioningState.DISCONNECTED, session.with_broker_url(known_broker_url), Internal(Action.CONNECT))
        log.info("Certificate is valid but the broker url is unknown")
        return Step(ProvisioningState.WAITING_FOR_INFO, session, Internal(Action.REQUEST_INFO))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    async def handle(self, state: ProvisioningState, session: Session, event: Event) -> Step:
        if isinstance(event, StateTimeout):
            if event.state is not state:
                _log.debug("%s: Ignoring stale %s timeout in state %s", session.client_id, event.action, state)
                return Step(state, session)
            return Step(state, session, Internal(event.action, event.attempt))

        handler = self._handlers.get((state, event.action))
        if handler is None:
            _log.debug("%s: Ignoring %s in state %s", session.client_id, event.action, state)
            return Step(state, session)
        return await handler(session, event)

    async def _generate_keypair(self, session: Session, event: Internal) -> Step:
        log = session_logger(_log, session.client_id)
        state = ProvisioningState.NO_KEYPAIR
        log.info("Generating a new keypair")
        delay = self._retry.delay(event.action, event.attempt)

        try:
            material = await asyncio.to_thread(self._generator.generate, session.client_id)
        except (ValueError, TypeError) as exc:
            log.warning("Failed to generate keypair: %s, trying again in %s seconds", exc, delay)
            return self._retry_step(state, session, event, delay)

        store = session.store
        try:
            with_key = await self._store(store.save, CredentialKind.PRIVATE_KEY, material.private_key_pem, session.store_handle)
            with_key_and_csr = await self._store(store.save, CredentialKind.CSR, material.csr_pem, with_key)
        except CredentialStoreError as exc:
            log.warning("Failed to save keypair to credential storage: %s, trying again in %s seconds", exc, delay)
            return self._retry_step(state, session, event, delay)

        return Step(
            ProvisioningState.NO_CERTIFICATE,
            session.with_store_handle(with_key_and_csr),
            Internal(Action.REQUEST_CERTIFICATE),
        )

    async def _request_certificate(self, session: Session, event: Internal) -> Step:
        log = session_logger(_log, session.client_id)
        state = ProvisioningState.NO_CERTIFICATE
        log.info("Requesting new certificate")
        delay = self._retry.delay(event.action, event.attempt)

        try:
            csr = await self._store(session.store.fetch, CredentialKind.CSR, session.store_handle)
            csr_pem = csr.decode("utf-8")
        except (CredentialStoreError, UnicodeDecodeError) as exc:
            log.warning("Credential storage could not provide the CSR: %s. Trying again in %s seconds", exc, delay)
            return self._retry_step(state, session, event, delay)

        try:
            response = await self._remote(self._pairing.exchange_csr(session.device_id, csr_pem))
        except PairingTransportError as exc:
            log.warning("Failed to ask for a certificate: %s. Trying again in %s seconds", exc, delay)
            return self._retry_step(state, session, event, delay)

        if response.status != 201:
            log.warning(
                "Get credentials failed with status %s: %r. Trying again in %s seconds",
                response.status,
                response.body,
                delay,
            )
            return self._retry_step(state, session, event, delay)

        pem_certificate = extract_certificate(response.body)
        if pem_certificate is None:
            log.warning("Credentials response carries no certificate: %r. Trying again in %s seconds", response.body, delay)
            return self._retry_step(state, session, event, delay)

        try:
            handle = await self._store(
                session.store.save, CredentialKind.CERTIFICATE, pem_certificate.encode("utf-8"), session.store_handle
            )
        except CredentialStoreError as exc:
            log.warning("Credential storage could not save certificate: %s. Trying again in %s seconds", exc, delay)
            return self._retry_step(state, session, event, delay)

        log.info("Received new certificate")
        return Step(ProvisioningState.WAITING_FOR_INFO, session.with_store_handle(handle), Internal(Action.REQUEST_INFO))

    async def _request_info(self, session: Session, event: Internal) -> Step:
        log = session_logger(_log, session.client_id)
        state = ProvisioningState.WAITING_FOR_INFO
        log.info("Requesting info")
        delay = self._retry.delay(event.action, event.attempt)

        try:
            response = await self._remote(self._pairing.fetch_info(session.device_id))
        except PairingTransportError as exc:
            log.warning("Failed to obtain transport info: %s. Trying again in %s seconds", exc, delay)
            return self._retry_step(state, session, event, delay)

        if response.status != 200:
            log.warning(
                "Get info failed with status %s: %r. Trying again in %s seconds",
                response.status,
                response.body,
                delay,
            )
            return self._retry_step(state, session, event, delay)

        broker_url = extract_broker_url(response.body, self._protocol)
        if broker_url is None:
            log.warning(
                "Info response has no broker url for %s: %r. Trying again in %s seconds",
                self._protocol,
                response.body,
                delay,
            )
            return self._retry_step(state, session, event, delay)

        log.info("Broker url is %s", broker_url)
        return Step(ProvisioningState.DISCONNECTED, session.with_broker_url(broker_url), Internal(Action.CONNECT))
