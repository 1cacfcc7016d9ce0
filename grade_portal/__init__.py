"""Grade portal bulk upload service: spreadsheet preview, import and reset."""

__version__ = "0.1.0"
