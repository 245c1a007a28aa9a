"""Sample Librarian: unattended ingestion of downloaded samples into a structured library."""

__version__ = "0.1.0"
