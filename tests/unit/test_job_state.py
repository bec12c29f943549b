"""
Unit tests for the job and run status machines
"""

import pytest
from models.base import JobStatus, RunStatus


@pytest.mark.parametrize(
    "current,target",
    [
        (JobStatus.PENDING, JobStatus.FETCHING),
        (JobStatus.FETCHING, JobStatus.PARSED),
        (JobStatus.PARSED, JobStatus.NORMALIZED),
        (JobStatus.PENDING, JobStatus.FAILED),
        (JobStatus.FETCHING, JobStatus.FAILED),
        (JobStatus.PARSED, JobStatus.FAILED),
    ],
)
def test_forward_transitions_allowed(current, target):
    assert current.can_transition_to(target)


@pytest.mark.parametrize(
    "current,target",
    [
        (JobStatus.FETCHING, JobStatus.PENDING),
        (JobStatus.PARSED, JobStatus.FETCHING),
        (JobStatus.PENDING, JobStatus.PARSED),
        (JobStatus.PENDING, JobStatus.NORMALIZED),
        (JobStatus.NORMALIZED, JobStatus.FAILED),
        (JobStatus.FAILED, JobStatus.FETCHING),
        (JobStatus.FAILED, JobStatus.FAILED),
    ],
)
def test_backward_skipping_and_terminal_transitions_rejected(current, target):
    assert not current.can_transition_to(target)


def test_terminal_statuses():
    assert JobStatus.NORMALIZED.is_terminal
    assert JobStatus.FAILED.is_terminal
    assert not JobStatus.PARSED.is_terminal

    assert not RunStatus.RUNNING.is_terminal
    assert RunStatus.SUCCEEDED.is_terminal
    assert RunStatus.FAILED.is_terminal
