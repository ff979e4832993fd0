"""
Database module - persistence collaborators for envelopes and signatures.

Security Considerations:
- Envelopes are stored in their serialized, sealed form
- No private keys or passwords are ever written to a store
"""

from sdcvault.db.store import KeyValueStore, MemoryStore, SQLiteStore

__all__ = ["KeyValueStore", "MemoryStore", "SQLiteStore"]
