"""Memory bank context compilation: ranking, summary hierarchies and budgeted context."""

__version__ = "0.1.0"
