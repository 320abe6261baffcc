"""
Sync layer: gap filling, range search, enrichment and the per-account pipeline.
"""
