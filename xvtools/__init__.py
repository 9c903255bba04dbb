"""Tools, a file-system image builder and a page-table model for a small teaching Unix-like system."""

__version__ = "0.1.0"