"""
Downtime spreadsheet reconciliation: phase registry, record views and batched
writes over Google Sheets.
"""
