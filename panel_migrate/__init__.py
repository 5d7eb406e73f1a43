"""Cross-host migration of websites, databases and projects between panels."""

__version__ = "0.1.0"
