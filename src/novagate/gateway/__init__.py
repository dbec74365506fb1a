"""Gateway core — connection supervision, command routing, group metadata."""

from .antilink import AntiLinkGuard, find_links, is_suspicious_link
from .gateway import Gateway, build_registry, load_session_factory
from .group_cache import GroupMetadataCache, GroupSnapshot
from .membership import MembershipAnnouncer
from .notifier import Notifier
from .registry import CommandSpec, PluginRegistry, RegistryGeneration, command
from .restart_budget import RestartBudget, RestartBudgetConfig
from .router import (
    CommandContext,
    CommandRouter,
    DispatchOutcome,
    DispatchStatus,
    FailureReason,
    HandlerError,
    Success,
)
from .status import StatusReporter
from .supervisor import ConnectionState, ConnectionSupervisor, RestartTier, TerminalReason

__all__ = [
    "AntiLinkGuard",
    "CommandContext",
    "CommandRouter",
    "CommandSpec",
    "ConnectionState",
    "ConnectionSupervisor",
    "DispatchOutcome",
    "DispatchStatus",
    "FailureReason",
    "Gateway",
    "GroupMetadataCache",
    "GroupSnapshot",
    "HandlerError",
    "MembershipAnnouncer",
    "Notifier",
    "PluginRegistry",
    "RegistryGeneration",
    "RestartBudget",
    "RestartBudgetConfig",
    "RestartTier",
    "StatusReporter",
    "Success",
    "TerminalReason",
    "build_registry",
    "command",
    "find_links",
    "is_suspicious_link",
    "load_session_factory",
]
