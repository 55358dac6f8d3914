"""FluxPense receipt-to-expense capture workflow."""

__version__ = "0.1.0"
