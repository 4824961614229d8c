"""Privacy shuffler: relay funds from one-off addresses to an escape hatch."""

__version__ = "0.1.0"
