"""Feature dependency graph.

A directed acyclic graph over feature ids where an edge ``A -> B`` means
"feature A requires feature B".  The graph is built once from catalog
configuration and is read-only afterwards; a cycle is a fatal
configuration error raised at construction time.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

from rolematrix.core.models import DependencyEdge, Feature
from rolematrix.exceptions import CatalogError, CyclicDependencyError, FeatureNotFoundError


class FeatureGraph:
    """In-memory feature dependency DAG."""

    def __init__(self, features: Iterable[Feature], edges: Iterable[DependencyEdge] = ()) -> None:
        self._features: dict[str, Feature] = {}
        for feature in features:
            if feature.id in self._features:
                raise CatalogError(f"Duplicate feature id: {feature.id}")
            self._features[feature.id] = feature

        self._requires: dict[str, list[str]] = {fid: [] for fid in self._features}
        self._required_by: dict[str, list[str]] = {fid: [] for fid in self._features}

        for feature in self._features.values():
            for dep in feature.dependencies:
                self._add_edge(feature.id, dep)
        for edge in edges:
            self._add_edge(edge.source, edge.target)

        self._order = self._topological_sort()
        self._rank = {fid: i for i, fid in enumerate(self._order)}
        self._ancestors: dict[str, frozenset[str]] = {}
        self._descendants: dict[str, frozenset[str]] = {}

    def _add_edge(self, source: str, target: str) -> None:
        for fid in (source, target):
            if fid not in self._features:
                raise CatalogError(f"Dependency edge {source} -> {target} references unknown feature {fid}")
        if source == target:
            raise CyclicDependencyError([source, source])
        if target not in self._requires[source]:
            self._requires[source].append(target)
            self._required_by[target].append(source)

    def _topological_sort(self) -> list[str]:
        """Order features so every prerequisite precedes its dependents.

        Iterative depth-first walk over an explicit ``(fid, deps)`` stack so
        chain length is not bounded by the interpreter's recursion limit.
        The first back edge found is reported as the cycle.
        """
        order: list[str] = []
        done: set[str] = set()

        for root in sorted(self._features):
            if root in done:
                continue
            path: list[str] = [root]
            on_path: set[str] = {root}
            stack: list[tuple[str, Iterator[str]]] = [(root, iter(sorted(self._requires[root])))]
            while stack:
                fid, deps = stack[-1]
                dep = next(deps, None)
                if dep is None:
                    stack.pop()
                    path.pop()
                    on_path.discard(fid)
                    done.add(fid)
                    order.append(fid)
                    continue
                if dep in done:
                    continue
                if dep in on_path:
                    start = path.index(dep)
                    raise CyclicDependencyError(path[start:] + [dep])
                path.append(dep)
                on_path.add(dep)
                stack.append((dep, iter(sorted(self._requires[dep]))))
        return order

    # -- lookups --------------------------------------------------------

    def __contains__(self, feature_id: object) -> bool:
        return feature_id in self._features

    def __len__(self) -> int:
        return len(self._features)

    def get(self, feature_id: str) -> Feature:
        try:
            return self._features[feature_id]
        except KeyError:
            raise FeatureNotFoundError(feature_id) from None

    @property
    def features(self) -> list[Feature]:
        """All features in dependency order."""
        return [self._features[fid] for fid in self._order]

    @property
    def feature_ids(self) -> list[str]:
        return list(self._order)

    def rank(self, feature_id: str) -> int:
        """Position in dependency order; prerequisites rank lower."""
        self.get(feature_id)
        return self._rank[feature_id]

    def sort(self, feature_ids: Iterable[str]) -> list[str]:
        """Sort ids prerequisites-first."""
        return sorted(feature_ids, key=self.rank)

    # -- traversal ------------------------------------------------------

    def dependencies(self, feature_id: str) -> list[Feature]:
        """Direct prerequisites of *feature_id*."""
        self.get(feature_id)
        return [self._features[d] for d in self.sort(self._requires[feature_id])]

    def dependents(self, feature_id: str) -> list[Feature]:
        """Features that directly require *feature_id*."""
        self.get(feature_id)
        return [self._features[d] for d in self.sort(self._required_by[feature_id])]

    def all_ancestors(self, feature_id: str) -> frozenset[str]:
        """Transitive prerequisites of *feature_id* (excluding itself)."""
        self.get(feature_id)
        if feature_id not in self._ancestors:
            self._ancestors[feature_id] = self._walk(feature_id, self._requires)
        return self._ancestors[feature_id]

    def all_descendants(self, feature_id: str) -> frozenset[str]:
        """Transitive dependents of *feature_id* (excluding itself)."""
        self.get(feature_id)
        if feature_id not in self._descendants:
            self._descendants[feature_id] = self._walk(feature_id, self._required_by)
        return self._descendants[feature_id]

    @staticmethod
    def _walk(start: str, adjacency: dict[str, list[str]]) -> frozenset[str]:
        visited: set[str] = set()
        pending = list(adjacency[start])
        while pending:
            fid = pending.pop()
            if fid in visited:
                continue
            visited.add(fid)
            pending.extend(adjacency[fid])
        return frozenset(visited)

    def edges(self) -> list[DependencyEdge]:
        return [
            DependencyEdge(source=src, target=dst)
            for src in self._order
            for dst in self.sort(self._requires[src])
        ]
