"""Job feed importer: streams CSV, TSV and NDJSON feeds into the jobs table."""

__version__ = "0.1.0"
