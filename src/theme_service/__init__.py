"""Theme token schema, CSS variable derivation and default-theme bookkeeping."""

__version__ = "0.1.0"
