"""Command line browser and artifact downloader for Jenkins."""

__version__ = "0.1.0"
