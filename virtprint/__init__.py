"""Virtual network printer: raw 9100 and IPP ingestion with PDF conversion."""

__version__ = "0.3.0"
