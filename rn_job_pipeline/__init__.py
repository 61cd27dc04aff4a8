"""
RN Job Pipeline
Scrapes RN postings from employer career sites and submits job URLs for indexing
"""

__version__ = "0.1.0"
