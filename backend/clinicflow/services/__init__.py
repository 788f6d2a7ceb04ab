"""Service layer exports."""
from clinicflow.services import (
    medical_card_service,
    name_resolver_service,
    nurse_dashboard_service,
    reference_service,
    session_service,
    stationary_service,
    task_creation_service,
    task_lifecycle_service,
    usage_reconciler_service,
)

__all__ = [
    "medical_card_service",
    "name_resolver_service",
    "nurse_dashboard_service",
    "reference_service",
    "session_service",
    "stationary_service",
    "task_creation_service",
    "task_lifecycle_service",
    "usage_reconciler_service",
]
