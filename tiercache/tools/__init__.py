"""
Tools Module

Cache-aside decorator and inspection helpers built on the orchestrator.
"""

from tiercache.tools.helpers import cached, get_cache_data, get_key_details, get_keys

__all__ = ["cached", "get_keys", "get_key_details", "get_cache_data"]
