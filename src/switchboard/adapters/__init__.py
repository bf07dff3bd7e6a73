"""Concrete provider adapters."""

from switchboard.adapters.http import HttpProvider

__all__ = ["HttpProvider"]
