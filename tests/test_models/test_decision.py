"""Unit tests for depbump.models.decision module."""

from __future__ import annotations

import pytest

from depbump.models.decision import (
    DecisionStatus,
    DependencyKey,
    DependencySection,
    UpgradeDecision,
)


def _upgrade(**overrides: object) -> UpgradeDecision:
    values = dict(
        name="react",
        section=DependencySection.DEPENDENCIES,
        from_specifier="^17.0.2",
        to_specifier="^18.3.1",
        to_version="18.3.1",
        status=DecisionStatus.UPGRADE,
        from_version="17.0.2",
    )
    values.update(overrides)
    return UpgradeDecision(**values)  # type: ignore[arg-type]


@pytest.mark.unit
class TestUpgradeDecision:
    """Tests for UpgradeDecision properties and serialization."""

    def test_key(self) -> None:
        decision = _upgrade()

        assert decision.key == DependencyKey(DependencySection.DEPENDENCIES, "react")
        assert str(decision.key) == "dependencies:react"

    def test_upgrade_is_not_unchanged(self) -> None:
        decision = _upgrade()

        assert not decision.unchanged
        assert not decision.is_error
        assert decision.update_type == "major"

    @pytest.mark.parametrize(
        "status",
        [DecisionStatus.NOT_FOUND, DecisionStatus.INVALID, DecisionStatus.FAILED],
    )
    def test_error_statuses(self, status: DecisionStatus) -> None:
        """Test error outcomes are unchanged and flagged."""
        decision = _upgrade(status=status, to_specifier="^17.0.2")

        assert decision.unchanged
        assert decision.is_error
        assert decision.update_type == "same"

    def test_non_registry_is_not_error(self) -> None:
        decision = _upgrade(status=DecisionStatus.NON_REGISTRY)

        assert decision.unchanged
        assert not decision.is_error

    def test_to_json(self) -> None:
        """Test JSON output carries specifiers, status and change size."""
        data = _upgrade(from_version="18.2.0").to_json()

        assert data == {
            "name": "react",
            "section": "dependencies",
            "from": "^17.0.2",
            "to": "^18.3.1",
            "version": "18.3.1",
            "status": "upgrade",
            "change": "minor",
            "message": None,
        }

    def test_str(self) -> None:
        assert str(_upgrade()) == "react ^17.0.2 → ^18.3.1"
        assert str(_upgrade(status=DecisionStatus.UNCHANGED)) == "react ^17.0.2 (unchanged)"

    def test_section_is_peer(self) -> None:
        assert DependencySection.PEER_DEPENDENCIES.is_peer
        assert not DependencySection.DEV_DEPENDENCIES.is_peer
