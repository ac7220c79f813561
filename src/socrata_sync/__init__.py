"""
socrata_sync: replicate Socrata open-data datasets into BigQuery.

Records are streamed from the SODA API, coerced field by field according to a
declared schema, staged as JSON lines in Cloud Storage and appended to a
BigQuery table. Incremental runs resume from the newest ingested row.
"""

__version__ = "0.1.0"
