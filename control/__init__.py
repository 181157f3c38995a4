"""
Control plane for Lite Failover Monitor.
Exposes the running engine over HTTP.
"""
