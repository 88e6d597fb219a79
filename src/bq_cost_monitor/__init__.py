"""Near-real-time BigQuery cost monitoring on Google Cloud Operations Suite."""

__version__ = "0.1.0"
