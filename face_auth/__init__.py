"""Face identity matching and enrollment microservice."""

__version__ = "1.0.0"
