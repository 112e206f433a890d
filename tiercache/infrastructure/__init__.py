"""
Infrastructure Module

Redis-facing and in-memory implementations of the cache tiers.
"""
