"""
Core functionality exports for depbump.

This module provides convenient access to the core subsystems of depbump.
Importing from here keeps user-facing imports clean and stable:

    from depbump.core import ManifestDiffer, NpmRegistry
"""

from __future__ import annotations

from depbump.core.registry import NpmRegistry
from depbump.core.policy import evaluate, select_target
from depbump.core.differ import DiffResult, ManifestDiffer
from depbump.core.workspaces import AggregateResult, Aggregator, discover_manifests
from depbump.core.doctor import DoctorSession, DoctorState, VerificationController
from depbump.core.runner import (
    RunOutcome,
    check_project,
    doctor_project,
    upgrade_project,
)

__all__ = [
    "AggregateResult",
    "Aggregator",
    "DiffResult",
    "DoctorSession",
    "DoctorState",
    "ManifestDiffer",
    "NpmRegistry",
    "RunOutcome",
    "VerificationController",
    "check_project",
    "discover_manifests",
    "doctor_project",
    "evaluate",
    "select_target",
    "upgrade_project",
]
