import pytest

from helpers import FakeClock


@pytest.fixture
def fake_clock():
    return FakeClock()
