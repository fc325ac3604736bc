"""Shared test fixtures for unit tests."""

import pytest

from workflow_watcher.queue.task_queue import TaskQueue


@pytest.fixture
def state_dir(tmp_path):
    path = tmp_path / "state"
    path.mkdir()
    return path


@pytest.fixture
def queue(state_dir):
    return TaskQueue(state_dir, max_queue_size=50)
