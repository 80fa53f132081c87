"""
Reporting: comparable export (CSV, JSON, GeoJSON) and the command line tools.
"""

from .export import ExportFormat, export_comparables, export_result

__all__ = ["ExportFormat", "export_comparables", "export_result"]
