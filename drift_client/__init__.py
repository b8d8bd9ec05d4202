"""Client-side orchestration for the drift_client proxy program on Solana."""

__version__ = "0.1.0"
