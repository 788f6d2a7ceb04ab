"""Schema exports."""

from clinicflow.schemas.medical_card import (
    AttachmentErrorRead,
    CardEditFormSchema,
    CardSavePayload,
    CardSaveResponse,
    EditSessionRead,
    OperationResultRead,
    StationaryFormSchema,
)
from clinicflow.schemas.nurse import (
    CardTaskCreate,
    DashboardMetricsRead,
    NurseDashboardRead,
    NurseIdentityRead,
    TaskCompleteRequest,
    TaskCompletionResponse,
    TaskCreate,
    TaskDetailRead,
    TaskViewRead,
)

__all__ = [
    "AttachmentErrorRead",
    "CardEditFormSchema",
    "CardSavePayload",
    "CardSaveResponse",
    "EditSessionRead",
    "OperationResultRead",
    "StationaryFormSchema",
    "CardTaskCreate",
    "DashboardMetricsRead",
    "NurseDashboardRead",
    "NurseIdentityRead",
    "TaskCompleteRequest",
    "TaskCompletionResponse",
    "TaskCreate",
    "TaskDetailRead",
    "TaskViewRead",
]
