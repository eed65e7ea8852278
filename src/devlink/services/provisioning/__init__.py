"""Credential provisioning lifecycle for a single device identity."""
from .agent import DeviceAgent, TransitionListener, create_agent
from .enums import Action, ProvisioningState
from .machine import Internal, ProvisioningStateMachine, StateTimeout, Step, Timer
from .retry import ExponentialBackoff, FixedDelay, RetryPolicy, policy_from_settings
from .session import Session

__all__ = [
    "Action",
    "DeviceAgent",
    "ExponentialBackoff",
    "FixedDelay",
    "Internal",
    "ProvisioningState",
    "ProvisioningStateMachine",
    "RetryPolicy",
    "Session",
    "StateTimeout",
    "Step",
    "Timer",
    "TransitionListener",
    "create_agent",
    "policy_from_settings",
]
