"""devflow: ticket-to-merge delivery with multi-backend generation."""

__version__ = "0.1.0"
