"""
Admission Intake Pipeline

A single-shot ingestion job that pulls a zipped patient admission export
from an email inbox over IMAP and loads the new rows into a relational
admissions table.
"""

__version__ = "0.1.0"
