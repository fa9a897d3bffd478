"""Stock consultation, stock transfers and loan tracking between works through the Sienge API."""

__version__ = "0.1.0"