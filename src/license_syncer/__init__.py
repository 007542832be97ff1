"""Assigns Microsoft 365 licenses to synchronized accounts from directory affiliation."""

__version__ = "0.1.0"
