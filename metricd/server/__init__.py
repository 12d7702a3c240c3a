"""
metricd - Collector Server

HTTP surface, middleware and the file backup of the metric store.
"""
