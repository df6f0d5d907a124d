"""Access matrix store and hypothetical overlays.

``AccessMatrix`` holds the committed (role x feature) assignment plus a
revision number per role.  It is total: every known role has a row
covering every known feature.  Its mutators are private and called only
by the Matrix Engine, which validates every transition first.

``OverlayMatrix`` layers pending cell values over any matrix view
without touching it.  The engine uses one as the working copy of a batch
and the preview engine uses one for "what if" questions.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Protocol

from rolematrix.core.models import AccessCell
from rolematrix.exceptions import FeatureNotFoundError, RoleNotFoundError


class MatrixView(Protocol):
    """Read surface shared by the store and its overlays."""

    def has_role(self, role_id: str) -> bool: ...

    def is_granted(self, role_id: str, feature_id: str) -> bool: ...

    def granted_features(self, role_id: str) -> frozenset[str]: ...


class AccessMatrix:
    """Versioned (role x feature) -> granted store."""

    def __init__(self, feature_ids: Iterable[str]) -> None:
        self._features: frozenset[str] = frozenset(feature_ids)
        self._rows: dict[str, set[str]] = {}
        self._revisions: dict[str, int] = {}

    @classmethod
    def from_cells(
        cls,
        feature_ids: Iterable[str],
        role_ids: Iterable[str],
        cells: Iterable[AccessCell],
        revisions: Mapping[str, int] | None = None,
    ) -> AccessMatrix:
        """Build a total matrix; cells absent from *cells* default to denied."""
        matrix = cls(feature_ids)
        for role_id in role_ids:
            matrix._add_row(role_id, (revisions or {}).get(role_id, 0))
        for cell in cells:
            if cell.role_id not in matrix._rows or cell.feature_id not in matrix._features:
                # Rows for deleted roles or retired features are not part of the matrix.
                continue
            if cell.granted:
                matrix._rows[cell.role_id].add(cell.feature_id)
        return matrix

    # -- reads ----------------------------------------------------------

    @property
    def feature_ids(self) -> frozenset[str]:
        return self._features

    def roles(self) -> list[str]:
        return list(self._rows)

    def has_role(self, role_id: str) -> bool:
        return role_id in self._rows

    def _row(self, role_id: str) -> set[str]:
        try:
            return self._rows[role_id]
        except KeyError:
            raise RoleNotFoundError(role_id) from None

    def is_granted(self, role_id: str, feature_id: str) -> bool:
        row = self._row(role_id)
        if feature_id not in self._features:
            raise FeatureNotFoundError(feature_id)
        return feature_id in row

    def granted_features(self, role_id: str) -> frozenset[str]:
        return frozenset(self._row(role_id))

    def revision(self, role_id: str) -> int:
        self._row(role_id)
        return self._revisions[role_id]

    def revisions(self) -> dict[str, int]:
        return dict(self._revisions)

    def snapshot(self) -> dict[str, frozenset[str]]:
        """Granted feature ids per role; equal snapshots mean equal matrices."""
        return {role_id: frozenset(row) for role_id, row in self._rows.items()}

    def cells(self, role_id: str | None = None) -> list[AccessCell]:
        """Every cell (granted or not), optionally for a single role."""
        role_ids = [role_id] if role_id is not None else sorted(self._rows)
        return [
            AccessCell(role_id=rid, feature_id=fid, granted=fid in self._row(rid))
            for rid in role_ids
            for fid in sorted(self._features)
        ]

    def overlay(self, values: Mapping[tuple[str, str], bool] | None = None) -> OverlayMatrix:
        return OverlayMatrix(self, values)

    # -- mutators (Matrix Engine only) ----------------------------------

    def _add_row(self, role_id: str, revision: int = 0) -> None:
        self._rows[role_id] = set()
        self._revisions[role_id] = revision

    def _drop_row(self, role_id: str) -> None:
        self._rows.pop(role_id, None)
        self._revisions.pop(role_id, None)

    def _apply(self, cells: Iterable[AccessCell], revisions: Mapping[str, int]) -> None:
        for cell in cells:
            row = self._row(cell.role_id)
            if cell.granted:
                row.add(cell.feature_id)
            else:
                row.discard(cell.feature_id)
        for role_id, revision in revisions.items():
            self._row(role_id)
            self._revisions[role_id] = revision


class OverlayMatrix:
    """Pending cell values layered over a base view.

    Writes go to the overlay only; the base is never modified.
    """

    def __init__(
        self,
        base: MatrixView,
        values: Mapping[tuple[str, str], bool] | None = None,
    ) -> None:
        self._base = base
        self._values: dict[tuple[str, str], bool] = {}
        for (role_id, feature_id), granted in (values or {}).items():
            self.set(role_id, feature_id, granted)

    def has_role(self, role_id: str) -> bool:
        return self._base.has_role(role_id)

    def is_granted(self, role_id: str, feature_id: str) -> bool:
        key = (role_id, feature_id)
        if key in self._values:
            return self._values[key]
        return self._base.is_granted(role_id, feature_id)

    def granted_features(self, role_id: str) -> frozenset[str]:
        granted = set(self._base.granted_features(role_id))
        for (rid, fid), value in self._values.items():
            if rid != role_id:
                continue
            if value:
                granted.add(fid)
            else:
                granted.discard(fid)
        return frozenset(granted)

    def set(self, role_id: str, feature_id: str, granted: bool) -> None:
        # Reading through the base validates both ids.
        self._base.is_granted(role_id, feature_id)
        self._values[(role_id, feature_id)] = granted

    def diff(self) -> list[AccessCell]:
        """Cells whose overlay value differs from the base, in write order."""
        return [
            AccessCell(role_id=rid, feature_id=fid, granted=value)
            for (rid, fid), value in self._values.items()
            if self._base.is_granted(rid, fid) != value
        ]
