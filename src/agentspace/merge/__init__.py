"""Folding finished agent work back into target branches."""

from agentspace.merge.auto_merge import (
    AutoMergeContext,
    AutoMergeCoordinator,
    AutoMergeOutcome,
    MergeStatus,
)

__all__ = ["AutoMergeContext", "AutoMergeCoordinator", "AutoMergeOutcome", "MergeStatus"]
