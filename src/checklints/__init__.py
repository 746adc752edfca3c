"""checklints: check a repository against declarative rule sets."""

__version__ = "0.2.1"
