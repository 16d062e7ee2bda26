"""Gift instance manager - control panel for gift tracker containers."""

__version__ = "0.1.0"
