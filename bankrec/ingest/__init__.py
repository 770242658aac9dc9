"""Statement ingestion: CSV text in, candidate records out."""

from .csv_statement import parse_statement

__all__ = ["parse_statement"]
