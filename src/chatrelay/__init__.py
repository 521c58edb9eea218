"""chatrelay: outbound chat delivery and single-request gateway calls."""

__version__ = "0.1.0"
