"""
Shared fixtures.

Everything runs against the in-memory store; there are no external
services to mock.
"""

import pytest

from project_tracker.audit import ActivityLogger
from project_tracker.models.records import Principal
from project_tracker.orchestrator import (
    BreakdownMutationFlow,
    ProjectMutationFlow,
    SubtotalFlow,
)
from project_tracker.queries import RecordQueries
from project_tracker.services.identity import StaticIdentityProvider
from project_tracker.services.storage import InMemoryRecordStore

from tests.helpers import FlakyRecordStore, SpyRecalculationService


@pytest.fixture
def store() -> InMemoryRecordStore:
    return InMemoryRecordStore()


@pytest.fixture
def flaky_store() -> FlakyRecordStore:
    return FlakyRecordStore()


@pytest.fixture
def principal() -> Principal:
    return Principal(
        id="user-1",
        name="Maria Santos",
        email="maria@example.gov",
        role="staff",
    )


@pytest.fixture
def admin() -> Principal:
    return Principal(id="admin-1", name="Admin", email="admin@example.gov", role="super_admin")


@pytest.fixture
def identity(principal) -> StaticIdentityProvider:
    return StaticIdentityProvider(principal)


@pytest.fixture
def anonymous() -> StaticIdentityProvider:
    return StaticIdentityProvider(None)


@pytest.fixture
def audit_logger(store) -> ActivityLogger:
    return ActivityLogger(store, retry_attempts=1, retry_wait_seconds=0)


@pytest.fixture
def recalculation(store) -> SpyRecalculationService:
    return SpyRecalculationService(store)


@pytest.fixture
def breakdown_flow(store, identity, audit_logger, recalculation) -> BreakdownMutationFlow:
    return BreakdownMutationFlow(
        store,
        identity,
        audit_logger=audit_logger,
        recalculation=recalculation,
    )


@pytest.fixture
def project_flow(store, identity, audit_logger) -> ProjectMutationFlow:
    return ProjectMutationFlow(store, identity, audit_logger=audit_logger)


@pytest.fixture
def subtotal_flow(store, identity) -> SubtotalFlow:
    return SubtotalFlow(store, identity)


@pytest.fixture
def queries(store, identity) -> RecordQueries:
    return RecordQueries(store, identity)
