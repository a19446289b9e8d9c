"""Shared fixtures for LearnPath Chat tests."""
import copy
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))

import pytest


class FakeResult:
    """Mimics the APIResponse returned by supabase-py's execute()."""

    def __init__(self, data):
        self.data = data


class FakeQuery:
    """In-memory stand-in for a supabase-py table query builder."""

    def __init__(self, client, table):
        self.client = client
        self.table_name = table
        self.rows = client.tables.setdefault(table, [])
        self._op = "select"
        self._columns = "*"
        self._payload = None
        self._filters = []
        self._order = []
        self._limit = None

    def select(self, columns="*"):
        self._op = "select"
        self._columns = columns
        return self

    def insert(self, payload):
        self._op = "insert"
        self._payload = payload
        return self

    def update(self, values):
        self._op = "update"
        self._payload = values
        return self

    def delete(self):
        self._op = "delete"
        return self

    def eq(self, column, value):
        self._filters.append((column, value))
        return self

    def order(self, column, desc=False):
        self._order.append((column, desc))
        return self

    def limit(self, count):
        self._limit = count
        return self

    def execute(self):
        self.client.calls.append((self.table_name, self._op))
        if self.table_name in self.client.failing_tables or (self.table_name, self._op) in self.client.failing_ops:
            raise RuntimeError(f"connection lost while querying {self.table_name}")

        if self._op == "insert":
            new_rows = self._payload if isinstance(self._payload, list) else [self._payload]
            new_rows = [copy.deepcopy(row) for row in new_rows]
            self.rows.extend(new_rows)
            return FakeResult(copy.deepcopy(new_rows))

        matched = [row for row in self.rows if all(row.get(c) == v for c, v in self._filters)]

        if self._op == "update":
            for row in matched:
                row.update(copy.deepcopy(self._payload))
            return FakeResult(copy.deepcopy(matched))

        if self._op == "delete":
            for row in matched:
                self.rows.remove(row)
            return FakeResult(copy.deepcopy(matched))

        for column, desc in reversed(self._order):
            matched.sort(key=lambda row: row.get(column) or "", reverse=desc)
        if self._limit is not None:
            matched = matched[:self._limit]
        if self._columns != "*":
            keys = [c.strip() for c in self._columns.split(",")]
            matched = [{k: row.get(k) for k in keys} for row in matched]
        return FakeResult(copy.deepcopy(matched))


class FakeSupabaseClient:
    """Holds tables as lists of dict rows."""

    def __init__(self):
        self.tables = {}
        self.calls = []
        self.failing_tables = set()
        self.failing_ops = set()  # (table, op) pairs

    def table(self, name):
        return FakeQuery(self, name)


@pytest.fixture
def supabase_client():
    """Create an empty in-memory Supabase client."""
    return FakeSupabaseClient()


@pytest.fixture
def database(supabase_client):
    """Create a DatabaseHandle already holding the in-memory client."""
    from services.database import DatabaseHandle
    return DatabaseHandle(client=supabase_client)


@pytest.fixture
def app_services(database):
    """Real stores over the in-memory client, with a mocked model backend."""
    from unittest.mock import Mock
    from services.auth import SupabaseAuthVerifier
    from services.container import AppServices
    from services.context_window import ContextConfig, ContextWindowBuilder
    from services.conversation_manager import ConversationManager
    from services.learning_progress import LearningProgressManager
    from services.step_extractor import StepExtractor

    tokenizer = Mock()
    tokenizer.encode.return_value = [1] * 42

    return AppServices(
        database=database,
        conversations=ConversationManager(database),
        learning_progress=LearningProgressManager(database),
        llm_client=Mock(),
        context_builder=ContextWindowBuilder(ContextConfig(max_turns=10, max_cost=4000)),
        step_extractor=StepExtractor(),
        auth_verifier=Mock(spec=SupabaseAuthVerifier),
        tokenizer=tokenizer
    )


@pytest.fixture
def client(app_services):
    """Create a test client authenticated as user-1, without running startup."""
    from fastapi.testclient import TestClient
    from main import app, get_current_user
    from services.auth import AuthContext

    app.state.services = app_services
    app.dependency_overrides[get_current_user] = lambda: AuthContext(user_id="user-1", email="one@example.com")

    yield TestClient(app)

    app.dependency_overrides.clear()
    app.state.services = None
