"""
Migration module for ADO Bridge.

This module provides the work item model, result aggregation, input loading
and run state persistence. The scheduler and operation adapter live in
``ado_migration.migration.scheduler`` and ``ado_migration.migration.adapter``.
"""

# Result aggregation
from ado_migration.migration.aggregator import AggregatorView, ResultAggregator, RunState

# Database utilities
from ado_migration.migration.database import (
    create_database_engine,
    database_url_for,
    get_session,
    init_database,
    reset_database,
)

# Input loading
from ado_migration.migration.inputs import exclude_targets, load_work_items

# Database models
from ado_migration.migration.models import Base, MigrationRun, WorkItemRecord

# State management
from ado_migration.migration.state import MigrationState

# Work items
from ado_migration.migration.work_item import (
    FailureKind,
    SourceRepo,
    TargetRepo,
    WorkItem,
    WorkItemStatus,
)

__all__ = [
    # Work items
    "WorkItem",
    "WorkItemStatus",
    "FailureKind",
    "SourceRepo",
    "TargetRepo",
    # Result aggregation
    "RunState",
    "AggregatorView",
    "ResultAggregator",
    # Input loading
    "load_work_items",
    "exclude_targets",
    # Models
    "Base",
    "MigrationRun",
    "WorkItemRecord",
    # Database utilities
    "init_database",
    "get_session",
    "create_database_engine",
    "database_url_for",
    "reset_database",
    # State management
    "MigrationState",
]
