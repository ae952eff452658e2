"""slotbook: availability and booking engine for barbershop appointments."""

__version__ = "0.1.0"
