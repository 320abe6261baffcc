"""
Core utilities: exceptions, cancellation and request pacing.

Shared by the node client, indexers, discovery and sync layers.
"""
