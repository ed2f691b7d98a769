"""
Core application modules.
Configuration, logging, metrics, tracing, cache stores and circuit breakers.
"""
