"""
metricd - Push-model metrics pipeline

An agent samples runtime and OS metrics and ships them to a collector server
that stores, backs up and serves them.
"""

__version__ = "1.0.0"
