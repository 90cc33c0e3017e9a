"""
Core infrastructure: persistence and indexer orchestration.
"""
