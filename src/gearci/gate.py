# gate.py
from __future__ import annotations

from typing import Dict, Mapping

from .model import FAILED, PENDING, SKIPPED, SUCCEEDED, TERMINAL, Job

ADMIT = "admit"
SKIP = "skip"
WAIT = "wait"


def admit(job: Job, upstream_statuses: Mapping[str, str]) -> str:
    """
    Admission decision for one job given the statuses of its prerequisites.

      - "wait"  while any prerequisite is non-terminal
      - "skip"  if any prerequisite ended failed or skipped
      - "admit" once every prerequisite succeeded (or there are none)

    Unknown prerequisites count as pending.
    """
    statuses = [upstream_statuses.get(name, PENDING) for name in job.needs]

    if any(s not in TERMINAL for s in statuses):
        return WAIT
    if any(s in (FAILED, SKIPPED) for s in statuses):
        return SKIP
    return ADMIT


def blocking_prerequisites(job: Job, upstream_statuses: Mapping[str, str]) -> Dict[str, str]:
    """Prerequisites that ended in a state other than succeeded."""
    out: Dict[str, str] = {}
    for name in job.needs:
        status = upstream_statuses.get(name, PENDING)
        if status in TERMINAL and status != SUCCEEDED:
            out[name] = status
    return out
