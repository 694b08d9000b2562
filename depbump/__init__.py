"""
depbump: policy-driven dependency upgrades for package.json manifests

depbump inspects npm manifests, works out which declared dependencies have
newer versions under a chosen upgrade policy, and can apply those upgrades
or verify them one batch at a time against your own test command.

Features include:
    • Upgrade targets: latest, newest, greatest, minor, patch, semver, dist-tags
    • Style-preserving rewrites (caret, tilde, x-ranges, hyphen and "or" ranges)
    • Doctor mode: install, test and roll back exactly the upgrades that break
    • Workspace and deep scans across monorepos
    • npm, yarn, pnpm and bun projects
"""

from __future__ import annotations

from depbump.__version__ import __version__

# ---------------------------------------------------------------------------
# Package Metadata
# ---------------------------------------------------------------------------

__author__ = "depbump Contributors"
__license__ = "Apache-2.0"
__description__ = "Policy-driven dependency upgrades for package.json manifests."

# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

__all__ = [
    "__version__",
]
