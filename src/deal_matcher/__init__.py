"""Deal matching against free-text dietary preferences."""

__version__ = "0.1.0"
