"""Forward support tickets to external support by driving the desk's web UI."""

__version__ = "0.1.0"
