"""Domain layer: aggregates and canonical domain events.

Aggregates are the only place that raise events; every other layer reads
them after commit and never mutates them.
"""
