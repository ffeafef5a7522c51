"""File ingestion: spreadsheet files → normalized grids."""

from .loader import MAX_FILE_BYTES, SUPPORTED_EXTENSIONS, read_grid, validate_file

__all__ = ["MAX_FILE_BYTES", "SUPPORTED_EXTENSIONS", "read_grid", "validate_file"]
