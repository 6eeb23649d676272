"""Pnpfucius - a console agent for privacy-themed prediction markets."""

__version__ = "0.1.0"

from pnpfucius.config import Config
from pnpfucius.main import main

__all__ = ["Config", "main", "__version__"]
