import pytest

from tracefold.events import EventFactory


@pytest.fixture
def factory() -> EventFactory:
    return EventFactory("s1")
