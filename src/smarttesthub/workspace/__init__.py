"""Isolated per-job working directories."""

from smarttesthub.workspace.manager import (
    CHAIN_SKELETONS,
    Workspace,
    WorkspaceError,
    WorkspaceManager,
)

__all__ = ["CHAIN_SKELETONS", "Workspace", "WorkspaceError", "WorkspaceManager"]
