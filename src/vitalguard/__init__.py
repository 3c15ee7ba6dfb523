"""
VitalGuard Monitor.

Client-side monitoring engine for a networked physiological sensor. Polls the
sensor, raises threshold alerts with deduplication, keeps a bounded history of
readings and pushes state to a remote collector whenever connectivity allows.
"""

__version__ = "0.1.0"
