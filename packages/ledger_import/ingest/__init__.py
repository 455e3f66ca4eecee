"""Tabular ingest: parsing raw text, mapping columns and parsing cell values."""
