"""
Glazier extraction – page-by-page vision extraction of glass items from
construction PDFs, with deduplication, sorting and cost accounting.
"""

__all__ = [
    "config",
    "logging",
    "paths",
]

__version__ = "0.1.0"
