"""Runtime for Cardity .car protocols: loading, state, method calls and snapshots."""

__version__ = "1.0.0"