"""
Core Interfaces Module

Protocols for the pluggable cache tiers.

Usage:
------
```python
from tiercache.core.interfaces import CacheLayer

def describe(layer: CacheLayer) -> str:
    return "ready" if layer.is_ready() else "unavailable"
```
"""

from tiercache.core.interfaces.cache import CacheLayer

__all__ = ["CacheLayer"]
