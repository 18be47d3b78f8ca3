"""psi-agenda: recurrence and billing engine for private-practice scheduling."""

__version__ = "0.1.0"
