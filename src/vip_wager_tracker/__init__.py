"""VIP wager tracker - wager computation and synchronization engine."""

__version__ = "0.1.0"
