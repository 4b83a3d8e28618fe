"""Composable chain of DNS resolver stages built on dnspython."""

__version__ = "0.1.0"