"""ERP export file writers."""

from .erp import ERPExporter, ExportOptions, apply_branch_suffix

__all__ = ["ERPExporter", "ExportOptions", "apply_branch_suffix"]
