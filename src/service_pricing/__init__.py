"""
Service Pricing Package

Turns an uploaded accounting workbook into a catalog of sellable service lines
and resolves quotes: Workbook → Snapshot → Blueprint → Overrides → Catalog → Quote.
"""

__version__ = "1.0.0"
