"""Workbook subpackage - cell addressing, value coercion, mapping and snapshots."""
