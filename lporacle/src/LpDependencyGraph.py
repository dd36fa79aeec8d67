"""LpDependencyGraph: Topological levels for nested LP tokens.

A POOL token's graph dependencies are exactly those of its two legs that are
themselves POOL tokens; non-POOL legs are priced directly and are not edges
here. Levels::

    level(t) = 0                                   if t has no POOL dependency
    level(t) = 1 + max(level(d) for d in deps(t))  otherwise

Nodes live in an arena with index-based dependency lists, and levels are
computed by an iterative depth-first walk with memoized integer levels, so
deep nesting never recurses. A dependency cycle is reported and its members
are marked unresolvable; tokens that depend on a cycle are blocked (no
level), and every other token still gets its level.

.. code-block:: python

    >>> graph = LpDependencyGraph.build(tokens)
    >>> graph.level("lp-a-b")
    0
    >>> graph.tokens_at_level(1)
    ['lp-ab-c']
    >>> graph.stats()["level_count"]
    2
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, TypedDict

from .errors import CycleDetected
from .TokenRecord import TokenRecord

logger = logging.getLogger(__name__)

_WHITE, _GRAY, _BLACK = 0, 1, 2


@dataclass
class DependencyNode:
    """One POOL token in the dependency graph.

    :ivar token_id: POOL token id.
    :ivar index: Position in the node arena.
    :ivar dependency_ids: Ids of POOL-typed legs only.
    :ivar level: Computed level, or None if cyclic or blocked by a cycle.
    """

    token_id: str
    index: int
    dependency_ids: tuple[str, ...]
    level: int | None = None


class DependencyStats(TypedDict):
    """Graph statistics, for observability only.

    :ivar total_pool_tokens: Number of POOL tokens in the graph.
    :ivar level_count: Number of distinct levels.
    :ivar level_distribution: Level -> number of tokens at that level.
    :ivar cyclic_tokens: Number of tokens on a dependency cycle.
    :ivar blocked_tokens: Number of tokens depending on a cycle.
    """

    total_pool_tokens: int
    level_count: int
    level_distribution: dict[int, int]
    cyclic_tokens: int
    blocked_tokens: int


class LpDependencyGraph:
    """DAG of POOL tokens with memoized topological levels.

    :ivar cycles: Detected cycles, one CycleDetected per cycle.
    """

    def __init__(self, tokens: Iterable[TokenRecord]) -> None:
        """Build the node arena and compute all levels.

        :param tokens: Token universe; only POOL tokens become nodes.
        """
        pools = [token for token in tokens if token.is_pool]
        self._index: dict[str, int] = {token.token_id: i for i, token in enumerate(pools)}
        self._nodes: list[DependencyNode] = []
        self._deps: list[tuple[int, ...]] = []

        for i, token in enumerate(pools):
            dep_ids = tuple(dict.fromkeys(
                leg_id for leg_id in token.leg_ids if leg_id in self._index
            ))
            self._nodes.append(DependencyNode(token.token_id, i, dep_ids))
            self._deps.append(tuple(self._index[dep_id] for dep_id in dep_ids))

        self.cycles: list[CycleDetected] = []
        self._cyclic: set[int] = set()
        self._blocked: set[int] = set()
        self._compute_levels()

        self._by_level: dict[int, list[str]] = {}
        for node in self._nodes:
            if node.level is not None:
                self._by_level.setdefault(node.level, []).append(node.token_id)

        for cycle in self.cycles:
            logger.warning(f"[dependencies] {cycle}; members excluded from valuation")
        logger.debug(
            f"[dependencies] {len(self._nodes)} POOL tokens over "
            f"{len(self._by_level)} levels"
        )

    @classmethod
    def build(cls, tokens: Iterable[TokenRecord]) -> LpDependencyGraph:
        """Build a dependency graph from the token universe."""
        return cls(tokens)

    def _compute_levels(self) -> None:
        state = [_WHITE] * len(self._nodes)

        for root in range(len(self._nodes)):
            if state[root] != _WHITE:
                continue
            state[root] = _GRAY
            stack: list[list[int]] = [[root, 0]]
            on_stack: dict[int, int] = {root: 0}

            while stack:
                frame = stack[-1]
                node, pos = frame
                deps = self._deps[node]

                if pos < len(deps):
                    frame[1] += 1
                    dep = deps[pos]
                    if state[dep] == _WHITE:
                        state[dep] = _GRAY
                        on_stack[dep] = len(stack)
                        stack.append([dep, 0])
                    elif state[dep] == _GRAY:
                        members = [entry[0] for entry in stack[on_stack[dep]:]]
                        self._cyclic.update(members)
                        self.cycles.append(
                            CycleDetected([self._nodes[m].token_id for m in members])
                        )
                    continue

                stack.pop()
                on_stack.pop(node, None)
                state[node] = _BLACK
                self._finalize(node)

    def _finalize(self, node: int) -> None:
        if node in self._cyclic:
            return
        deps = self._deps[node]
        if any(dep in self._cyclic or dep in self._blocked for dep in deps):
            self._blocked.add(node)
            return
        levels = [self._nodes[dep].level for dep in deps]
        self._nodes[node].level = 0 if not levels else 1 + max(levels)

    @property
    def nodes(self) -> tuple[DependencyNode, ...]:
        """All nodes in arena order."""
        return tuple(self._nodes)

    def node(self, token_id: str) -> DependencyNode | None:
        """Get the node for a POOL token id."""
        index = self._index.get(token_id)
        return self._nodes[index] if index is not None else None

    def level(self, token_id: str) -> int | None:
        """Level of a POOL token, or None if unknown, cyclic or blocked."""
        node = self.node(token_id)
        return node.level if node is not None else None

    def dependencies(self, token_id: str) -> tuple[str, ...]:
        """POOL-typed dependency ids of a token."""
        node = self.node(token_id)
        return node.dependency_ids if node is not None else ()

    def tokens_at_level(self, level: int) -> list[str]:
        """POOL token ids at the given level, in universe order."""
        return list(self._by_level.get(level, []))

    def levels(self) -> list[int]:
        """Distinct levels in ascending order."""
        return sorted(self._by_level)

    @property
    def unresolvable(self) -> set[str]:
        """Ids of tokens on a dependency cycle."""
        return {self._nodes[i].token_id for i in self._cyclic}

    @property
    def blocked(self) -> set[str]:
        """Ids of tokens that depend, directly or not, on a cycle."""
        return {self._nodes[i].token_id for i in self._blocked}

    def stats(self) -> DependencyStats:
        """Graph statistics, for observability only."""
        return {
            "total_pool_tokens": len(self._nodes),
            "level_count": len(self._by_level),
            "level_distribution": {
                level: len(self._by_level[level]) for level in self.levels()
            },
            "cyclic_tokens": len(self._cyclic),
            "blocked_tokens": len(self._blocked),
        }
