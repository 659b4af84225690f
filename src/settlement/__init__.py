"""Booking settlement: cancellation refunds, escrow release and host payouts."""

__version__ = "0.1.0"
