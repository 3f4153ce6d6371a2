import pytest

from order_workflow.engine import WorkflowEngine
from order_workflow.stages import DEFAULT_TABLE
from order_workflow.store import InMemoryOrderStore


@pytest.fixture
def store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def engine(store: InMemoryOrderStore) -> WorkflowEngine:
    return WorkflowEngine(store, DEFAULT_TABLE)
