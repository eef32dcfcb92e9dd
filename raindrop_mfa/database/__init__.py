"""
Storage layer for raindrop-mfa.

This package provides:
- Key-value stores (memory, Redis, SQL, tiered)
- User MFA profiles and global MFA policy on top of them
"""
from .kv_store import (
    KeyValueStore,
    MemoryKeyValueStore,
    RedisKeyValueStore,
    SQLKeyValueStore,
    TieredStore,
    build_store,
)
from .profile_db import MfaMethod, MfaProfile, PolicyConfig, PolicyStore, ProfileStore

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "RedisKeyValueStore",
    "SQLKeyValueStore",
    "TieredStore",
    "build_store",
    "MfaMethod",
    "MfaProfile",
    "PolicyConfig",
    "PolicyStore",
    "ProfileStore",
]
