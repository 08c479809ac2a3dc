"""Resolve which files of a source tree are selected and flatten them into one artifact."""

__version__ = "0.1.0"
