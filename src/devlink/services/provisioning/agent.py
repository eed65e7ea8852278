"""Single-consumer event loop driving one provisioning session."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

from devlink.services.credentials import CredentialStore, resolve_store
from devlink.services.crypto import KeyMaterialGenerator, KeySpec
from devlink.services.device_config import DeviceOptions, ProvisioningSettings
from devlink.services.errors import CredentialStoreError, DeviceConfigError, DevlinkError, SessionStartError
from devlink.services.logging import session_logger
from devlink.services.pairing import PairingClient, PairingHttpClient

from .enums import ProvisioningState
from .machine import Event, ProvisioningStateMachine, StateTimeout, Step, Timer
from .retry import policy_from_settings
from .session import Session

__all__ = ["DeviceAgent", "TransitionListener", "create_agent"]

_log = logging.getLogger("devlink.provisioning.agent")

TransitionListener = Callable[[Optional[ProvisioningState], ProvisioningState, Session], None]


class DeviceAgent:
    """Owns the current state of one session and processes its events in order.

    Retry timers are single-shot and tagged with the state and a generation
    counter; leaving the state cancels the pending timer, and a timer event
    that still slips through is dropped.
    """

    def __init__(self, session: Session, machine: ProvisioningStateMachine, *, known_broker_url: str | None = None) -> None:
        self._session = session
        self._machine = machine
        self._known_broker_url = known_broker_url
        self._state: ProvisioningState | None = None
        self._queue: asyncio.Queue[Event] = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._timer_handle: asyncio.TimerHandle | None = None
        self._pending_timer: Timer | None = None
        self._generation = 0
        self._ready = asyncio.Event()
        self._listeners: list[TransitionListener] = []
        self._log = session_logger(_log, session.client_id)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def state(self) -> ProvisioningState | None:
        return self._state

    @property
    def session(self) -> Session:
        return self._session

    @property
    def client_id(self) -> str:
        return self._session.client_id

    @property
    def pending_timer(self) -> Timer | None:
        return self._pending_timer

    @property
    def ready(self) -> asyncio.Event:
        return self._ready

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def add_listener(self, listener: TransitionListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._task is not None:
            return
        step = await self._machine.initial_step(self._session, known_broker_url=self._known_broker_url)
        self._apply(step)
        self._task = asyncio.create_task(self._run(), name=f"devlink-agent-{self.client_id}")

    async def stop(self) -> None:
        self._cancel_timer()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._machine.close()

    async def wait_ready(self) -> Session:
        """Wait until the session reaches the ready state and return it."""

        if self._ready.is_set():
            return self._session
        if self._task is None:
            raise DevlinkError("agent has not been started")
        waiter = asyncio.create_task(self._ready.wait())
        try:
            await asyncio.wait({waiter, self._task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not waiter.done():
                waiter.cancel()
        if self._ready.is_set():
            return self._session
        if self._task.cancelled():
            raise DevlinkError(f"{self.client_id}: session stopped before it became ready")
        self._task.result()
        raise DevlinkError(f"{self.client_id}: session loop ended before it became ready")

    # ------------------------------------------------------------------
    # Event loop
    # ------------------------------------------------------------------
    async def _run(self) -> None:
        try:
            while True:
                event = await self._queue.get()
                assert self._state is not None
                try:
                    step = await self._machine.handle(self._state, self._session, event)
                except Exception:
                    # never let one failing step end the session
                    self._log.exception(
                        "Unexpected error while handling %s in state %s",
                        event.action,
                        self._state,
                        extra={"state": self._state, "action": event.action, "attempt": event.attempt},
                    )
                    step = self._machine.recover_step(self._state, self._session, event)
                self._apply(step)
        finally:
            self._cancel_timer()

    def _apply(self, step: Step) -> None:
        previous = self._state
        self._session = step.session
        if step.state is not previous:
            self._cancel_timer()
            self._generation += 1
            self._state = step.state
            self._log.debug("%s -> %s", previous, step.state)
            if step.state is ProvisioningState.DISCONNECTED:
                self._log.info("Ready to connect to %s", self._session.broker_url)
                self._ready.set()
            for listener in list(self._listeners):
                listener(previous, step.state, self._session)
        if step.next_event is not None:
            self._queue.put_nowait(step.next_event)
        if step.timer is not None:
            self._schedule(step.timer)

    def _schedule(self, timer: Timer) -> None:
        self._cancel_timer()
        assert self._state is not None
        event = StateTimeout(state=self._state, action=timer.action, attempt=timer.attempt, generation=self._generation)
        loop = asyncio.get_running_loop()
        self._pending_timer = timer
        self._timer_handle = loop.call_later(timer.delay, self._fire, event)

    def _fire(self, event: StateTimeout) -> None:
        self._timer_handle = None
        self._pending_timer = None
        if event.state is not self._state or event.generation != self._generation:
            self._log.debug("Dropping stale %s timer", event.action)
            return
        self._queue.put_nowait(event)

    def _cancel_timer(self) -> None:
        if self._timer_handle is not None:
            self._timer_handle.cancel()
        self._timer_handle = None
        self._pending_timer = None


async def create_agent(
    options: DeviceOptions,
    *,
    settings: ProvisioningSettings | None = None,
    pairing: PairingClient | None = None,
    generator: KeyMaterialGenerator | None = None,
    store: CredentialStore | None = None,
    start: bool = True,
    **machine_kwargs: Any,
) -> DeviceAgent:
    """Build a session for ``options`` and (by default) start its agent.

    Raises:
        SessionStartError: the credential store cannot be initialised or the
            keypair check fails.
    """

    settings = settings or ProvisioningSettings()
    client_id = options.client_id
    try:
        backend = store or resolve_store(options.credential_store)
        init_args = {"client_id": client_id, **options.credential_store_args}
        handle = await asyncio.wait_for(asyncio.to_thread(backend.init, init_args), timeout=settings.store_timeout)
    except (CredentialStoreError, asyncio.TimeoutError) as exc:
        reason = str(exc) or "timed out"
        _log.warning("%s: Can't initialize credential storage: %s", client_id, reason)
        raise SessionStartError(f"{client_id}: credential storage failed: {reason}") from exc

    session = Session.from_options(options, store=backend, store_handle=handle)
    if pairing is None:
        pairing = PairingHttpClient.from_session(session, protocol=settings.protocol, timeout=settings.request_timeout)
    if generator is None:
        try:
            spec = KeySpec(algorithm=settings.key_algorithm, rsa_key_size=settings.rsa_key_size, ec_curve=settings.ec_curve)
        except ValueError as exc:
            raise DeviceConfigError(f"invalid key settings: {exc}") from exc
        generator = KeyMaterialGenerator(spec)
    machine_kwargs.setdefault("retry", policy_from_settings(settings))
    machine = ProvisioningStateMachine(
        pairing,
        generator=generator,
        store_timeout=settings.store_timeout,
        request_timeout=settings.request_timeout,
        protocol=settings.protocol,
        **machine_kwargs,
    )
    agent = DeviceAgent(session, machine, known_broker_url=options.broker_url)
    if start:
        try:
            await agent.start()
        except BaseException:
            machine.close()
            raise
    return agent
