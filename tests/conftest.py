"""
Shared fixtures.
"""

from typing import List

import pytest

from tests.fakes import FakeProxy, RecordingObserver


@pytest.fixture
def proxies() -> List[FakeProxy]:
    return [FakeProxy(f"memcache{i}") for i in range(1, 4)]


@pytest.fixture
def observer() -> RecordingObserver:
    return RecordingObserver()
