"""Local-first change tracking and Google Sheets sync for the messaging matrix."""

__version__ = "0.01.00"
