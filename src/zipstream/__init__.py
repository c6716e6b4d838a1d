"""
zipstream - archive ingestion pipeline.

Consumes archive notifications, extracts a descriptor and tabular rows from
each archive, enriches and types them, and republishes keyed records.
"""

__version__ = "0.1.0"
