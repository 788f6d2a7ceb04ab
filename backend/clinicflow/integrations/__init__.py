"""Integration shortcuts."""

from .clinic_api import (
    ClinicApiClient,
    ClinicApiError,
    UploadPart,
    as_list,
    count_of,
    extract_detail,
)

__all__ = [
    "ClinicApiClient",
    "ClinicApiError",
    "UploadPart",
    "as_list",
    "count_of",
    "extract_detail",
]
