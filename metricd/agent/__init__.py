"""
metricd - Agent

Metric sources, polling and report schedulers, and the delivery client.
"""
