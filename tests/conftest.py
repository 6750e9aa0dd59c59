from __future__ import annotations

from collections.abc import Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from taskboard_api.app.memory import InMemoryTaskStore
from taskboard_api.main import create_app

from .fakes import FakeFleet, make_settings


@pytest.fixture
def fleet() -> FakeFleet:
    return FakeFleet(names={"agent-a": "Alice", "agent-b": "Bob"})


@pytest.fixture
def store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def app(store: InMemoryTaskStore, fleet: FakeFleet) -> FastAPI:
    return create_app(store=store, fleet=fleet, settings_override=make_settings())


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client
