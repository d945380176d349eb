"""Conduit - streaming orchestration between a language model and remote tools."""

__version__ = "0.1.0"
