import pytest

from fakes import FakeBroker


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()
