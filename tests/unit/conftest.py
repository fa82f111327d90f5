import pytest

from fakes import FakeClientFactory


@pytest.fixture
def client_factory() -> FakeClientFactory:
    return FakeClientFactory()
