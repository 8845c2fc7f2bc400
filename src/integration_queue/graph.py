from __future__ import annotations

import heapq
from collections import defaultdict
from types import MappingProxyType
from typing import Iterable, Mapping

from .errors import CycleDetected, UnknownCategory
from .models import Category


class CategoryGraph:
    """Immutable dependency DAG over integration categories.

    The full graph is checked for cycles and dangling references when it is
    built, so a constructed graph is always a valid DAG.
    """

    def __init__(self, categories: Iterable[Category]) -> None:
        by_key: dict[str, Category] = {}
        for category in categories:
            if category.key in by_key:
                raise ValueError(f"Duplicate category key: {category.key}")
            by_key[category.key] = category

        for category in by_key.values():
            for dep in sorted(category.dependencies):
                if dep not in by_key:
                    raise UnknownCategory(dep, referenced_by=category.key)

        self._categories: Mapping[str, Category] = MappingProxyType(by_key)
        direct = {key: category.dependencies for key, category in by_key.items()}
        topo = self._sort(set(by_key), direct)

        closure: dict[str, frozenset[str]] = {}
        for key in topo:
            reachable: set[str] = set()
            for dep in direct[key]:
                reachable.add(dep)
                reachable |= closure[dep]
            closure[key] = frozenset(reachable)
        self._closure: Mapping[str, frozenset[str]] = MappingProxyType(closure)

    @property
    def keys(self) -> frozenset[str]:
        return frozenset(self._categories)

    def category(self, key: str) -> Category:
        try:
            return self._categories[key]
        except KeyError:
            raise UnknownCategory(key) from None

    def dependencies_of(self, key: str) -> frozenset[str]:
        """Direct dependency categories of *key*."""
        return self.category(key).dependencies

    def ancestors_of(self, key: str) -> frozenset[str]:
        """Every category *key* transitively depends on."""
        self.category(key)
        return self._closure[key]

    def installation_order(self, categories: Iterable[str]) -> list[str]:
        """Order a subset of categories so that dependencies come first.

        Constraints are taken from the transitive closure restricted to the
        subset, so a category never precedes something it reaches through a
        category outside the subset. Unconstrained categories are ordered by
        ascending priority, then key.

        Raises:
            UnknownCategory: If any key is not registered.
            CycleDetected: If the selected categories contain a cycle.
        """
        selected = set(categories)
        for key in sorted(selected):
            self.category(key)
        constraints = {key: self._closure[key] & selected for key in selected}
        return self._sort(selected, constraints)

    def _sort(self, selected: set[str], dependencies: Mapping[str, frozenset[str]]) -> list[str]:
        indegree = {key: 0 for key in selected}
        edges: dict[str, list[str]] = defaultdict(list)
        for key in selected:
            for dep in dependencies[key]:
                if dep in selected:
                    indegree[key] += 1
                    edges[dep].append(key)

        heap = [self._rank(key) for key, degree in indegree.items() if degree == 0]
        heapq.heapify(heap)
        order: list[str] = []
        while heap:
            _, current = heapq.heappop(heap)
            order.append(current)
            for nxt in edges[current]:
                indegree[nxt] -= 1
                if indegree[nxt] == 0:
                    heapq.heappush(heap, self._rank(nxt))

        if len(order) != len(selected):
            raise CycleDetected(sorted(key for key, degree in indegree.items() if degree > 0))
        return order

    def _rank(self, key: str) -> tuple[int, str]:
        return (self._categories[key].priority, key)
