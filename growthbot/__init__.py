"""Growth Co-Pilot agent: app complaint and PM job intelligence pipelines."""

__version__ = "0.1.0"
