"""Domain models for the grade portal bulk upload service.

This package contains the dataclasses that flow through the upload pipeline:
configuration, validated rows, the reconciliation plan and the final outcome.
"""

from .config_models import DatabaseConfig, ImportSettings, PortalConfig
from .error_record import ErrorRecord
from .outcome import UploadOutcome, UploadRejected, UploadSuccess
from .plan import (
    Course,
    GradeUpsert,
    NewStudent,
    ReconciliationPlan,
    StoreSnapshot,
    StudentLookup,
)
from .rows import InvalidRow, PreviewRow, ReasonCode, ValidatedRow, ValidRow
from .session import AdminSession

__all__ = [
    # Configuration models
    "DatabaseConfig",
    "ImportSettings",
    "PortalConfig",
    # Row models
    "ReasonCode",
    "ValidRow",
    "InvalidRow",
    "ValidatedRow",
    "PreviewRow",
    # Reconciliation models
    "Course",
    "StoreSnapshot",
    "NewStudent",
    "GradeUpsert",
    "StudentLookup",
    "ReconciliationPlan",
    # Results
    "UploadSuccess",
    "UploadRejected",
    "UploadOutcome",
    "ErrorRecord",
    "AdminSession",
]
