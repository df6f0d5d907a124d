"""Tests for role previews and bulk impact dry-runs."""

from __future__ import annotations

import pytest

from rolematrix.config import Settings
from rolematrix.core.models import AccessibilityLevel, CellChange
from rolematrix.core.preview import PreviewEngine


class TestPreviewRole:
    def test_live_preview(self, service):
        preview = service.preview_role("officer")
        assert set(preview.available_features) == {"navigation", "expense_read", "expense_write"}
        assert preview.navigable_apps == ["expenses", "shell"]
        assert preview.navigation == {"core-apps": ["expense_read", "expense_write"], "ui": ["navigation"]}
        assert preview.feature_count == 3
        assert preview.accessibility_level == AccessibilityLevel.STANDARD
        assert preview.warnings == []
        assert not preview.hypothetical

    def test_preview_is_pure(self, service):
        before = service.matrix.snapshot()
        revisions = service.matrix.revisions()
        first = service.preview_role("officer", {"analytics": True})
        second = service.preview_role("officer", {"analytics": True})
        assert first == second
        assert service.matrix.snapshot() == before
        assert service.matrix.revisions() == revisions

    def test_hypothetical_grant(self, service):
        preview = service.preview_role("officer", {"analytics": True})
        assert "analytics" in preview.available_features
        assert preview.navigation["dashboard"] == ["analytics"]
        assert preview.hypothetical
        assert not service.has_access("officer", "analytics")

    def test_hypothetical_revoke_reports_blocked_feature(self, service):
        preview = service.preview_role("officer", {"expense_read": False})
        assert preview.available_features == ["navigation"]
        assert "Expense Write requires Expense Read (expense_read) and is not available" in preview.warnings
        assert "Limited feature access may impact user experience" in preview.warnings
        assert preview.accessibility_level == AccessibilityLevel.LIMITED

    def test_empty_role(self, service):
        preview = service.preview_role("temp")
        assert preview.available_features == []
        assert preview.navigable_apps == []
        assert preview.accessibility_level == AccessibilityLevel.LIMITED
        assert any(w.startswith("Navigation disabled") for w in preview.warnings)

    def test_full_access(self, service):
        everything = {fid: True for fid in service.graph.feature_ids}
        preview = service.preview_role("admin", everything)
        assert preview.accessibility_level == AccessibilityLevel.FULL
        assert preview.feature_count == len(service.graph)

    def test_matrix_view_as_hypothetical(self, service):
        overlay = service.matrix.overlay({("temp", "themes"): True})
        preview = service.preview_role("temp", overlay)
        assert preview.available_features == ["themes"]
        assert preview.hypothetical

    def test_hypothetical_dependents_follow_order(self, service):
        preview = service.preview_role("temp", {"charts": True, "expense_read": True})
        assert preview.available_features == ["expense_read", "charts"]


class TestPreviewBulk:
    def test_counts_without_committing(self, service):
        impact = service.preview_bulk(
            [CellChange.grant("temp", "themes"), CellChange.grant("officer", "themes")]
        )
        assert impact.validation.is_valid
        assert impact.cells_changed == 2
        assert impact.roles_affected == ["temp", "officer"]
        assert impact.affected_principals == 3
        assert not service.has_access("temp", "themes")
        assert service.engine.revision("temp") == 0

    def test_no_op_changes_affect_nobody(self, service):
        impact = service.preview_bulk([CellChange.grant("officer", "expense_read")])
        assert impact.cells_changed == 0
        assert impact.roles_affected == []
        assert impact.affected_principals == 0

    def test_large_impact_warning(self, service):
        engine = PreviewEngine(
            service.graph,
            service.matrix,
            service.get_role,
            config=Settings(bulk_impact_warning_threshold=2),
        )
        impact = engine.preview_bulk(
            [CellChange.grant("officer", "themes"), CellChange.grant("admin", "themes")]
        )
        assert "This will affect 4 users across 2 roles" in impact.warnings

    def test_invalid_batch_reported(self, service):
        impact = service.preview_category_update(["temp"], "admin", "enable")
        assert not impact.validation.is_valid
        assert "user_management" in [e.feature_id for e in impact.validation.errors]

    def test_category_preview_counts_prerequisites(self, service):
        impact = service.preview_category_update(["temp", "officer"], "dashboard", "enable")
        assert impact.validation.is_valid
        # temp needs the whole expense chain, officer only the dashboard pair
        assert impact.cells_changed == 6
        assert impact.roles_affected == ["temp", "officer"]

    @pytest.mark.asyncio
    async def test_category_commit_changes_previewed_cells(self, service):
        impact = service.preview_category_update(["temp", "officer"], "dashboard", "enable")
        result = await service.bulk_category_update(["temp", "officer"], "dashboard", "enable")
        assert len(result.changes) == impact.cells_changed
