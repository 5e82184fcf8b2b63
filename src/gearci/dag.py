# dag.py
from __future__ import annotations

from collections import Counter
from typing import Dict, List, Set, Tuple

from .errors import CyclicDependencyError, DefinitionError
from .model import Job


def build_dag(jobs: List[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build the job graph from `needs` edges.

    Returns (adj, indeg):
      adj[name]   -> jobs that list `name` in their needs
      indeg[name] -> number of distinct prerequisites of `name`
    """
    names = [j.name for j in jobs]
    dupes = sorted(n for n, count in Counter(names).items() if count > 1)
    if dupes:
        raise DefinitionError(f"Duplicate job names found: {dupes}")

    adj: Dict[str, Set[str]] = {n: set() for n in names}
    indeg: Dict[str, int] = dict.fromkeys(names, 0)

    for job in jobs:
        for need in dict.fromkeys(job.needs or []):
            if need not in adj:
                raise DefinitionError(
                    f"Job '{job.name}' needs missing job '{need}'. Known jobs: {sorted(adj)}"
                )
            adj[need].add(job.name)
            indeg[job.name] += 1

    return adj, indeg


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Group jobs into stages: every job in a stage only needs jobs from
    earlier stages, so a stage's jobs may run concurrently.
    """
    remaining = dict(indeg)
    frontier = sorted(n for n, d in remaining.items() if d == 0)
    levels: List[List[str]] = []

    while frontier:
        levels.append(frontier)
        released: Set[str] = set()
        for node in frontier:
            del remaining[node]
            for child in adj.get(node, ()):
                remaining[child] -= 1
                if remaining[child] == 0:
                    released.add(child)
        frontier = sorted(released)

    if remaining:
        raise CyclicDependencyError(sorted(remaining))

    return levels


def validate(jobs: List[Job]) -> List[List[str]]:
    """Build the DAG and check it is acyclic. Returns the stages."""
    adj, indeg = build_dag(jobs)
    return topo_levels(adj, indeg)
