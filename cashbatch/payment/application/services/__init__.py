"""Business logic services for cash application.

Service Layer Pattern implementation following DDD and Hexagonal Architecture.
"""

__all__ = [
    "AutoApplyService",
    "BatchService",
    "CustomerResolver",
    "ExportService",
    "LookupService",
    "build_export_options",
]

from .batch_service import BatchService
from .customer_resolution import CustomerResolver
from .export_service import ExportService, build_export_options
from .lookup_service import LookupService
from .matching_service import AutoApplyService
