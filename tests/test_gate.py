import pytest

from gearci.dsl import job, sh
from gearci.gate import ADMIT, SKIP, WAIT, admit, blocking_prerequisites
from gearci.model import FAILED, PENDING, RUNNING, SKIPPED, SUCCEEDED


def _job(*needs):
    return job("j", sh("noop", "true"), needs=list(needs))


def test_no_prerequisites_is_admitted():
    assert admit(_job(), {}) == ADMIT


def test_all_prerequisites_succeeded():
    assert admit(_job("a", "b"), {"a": SUCCEEDED, "b": SUCCEEDED}) == ADMIT


@pytest.mark.parametrize("status", [PENDING, RUNNING])
def test_waits_while_prerequisite_not_terminal(status):
    assert admit(_job("a"), {"a": status}) == WAIT


def test_unknown_prerequisite_counts_as_pending():
    assert admit(_job("a"), {}) == WAIT


@pytest.mark.parametrize("status", [FAILED, SKIPPED])
def test_skips_when_prerequisite_did_not_succeed(status):
    assert admit(_job("a"), {"a": status}) == SKIP


def test_wait_takes_precedence_over_skip():
    # a later-finishing prerequisite still holds the decision open
    assert admit(_job("a", "b"), {"a": FAILED, "b": RUNNING}) == WAIT


def test_blocking_prerequisites_lists_only_unsuccessful_terminal_states():
    statuses = {"a": FAILED, "b": SUCCEEDED, "c": SKIPPED}
    assert blocking_prerequisites(_job("a", "b", "c"), statuses) == {"a": FAILED, "c": SKIPPED}
