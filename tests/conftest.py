from collections.abc import Callable

import pytest

from infoflow.follow_up import FollowUpTracker
from tests.infoflow_fakes import FakeRuntime, FakeSender, FakeStatusSink, ManualClock


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def tracker(clock: ManualClock) -> FollowUpTracker:
    return FollowUpTracker(clock=clock)


@pytest.fixture
def fake_sender() -> FakeSender:
    return FakeSender()


@pytest.fixture
def fake_runtime() -> Callable[..., FakeRuntime]:
    def _factory(*replies: str) -> FakeRuntime:
        return FakeRuntime(replies or ("ok",))

    return _factory


@pytest.fixture
def status_sink() -> FakeStatusSink:
    return FakeStatusSink()
