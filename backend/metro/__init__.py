"""Metro chat assistant relay."""

__version__ = "0.1.0"
