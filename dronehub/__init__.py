"""dronehub: client-side reconciliation for polled drone registries."""

__version__ = "0.1.0"
