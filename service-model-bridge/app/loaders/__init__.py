"""Model loaders.

Loaders encapsulate how the model file is materialized before a session is
opened: located in a read-only asset bundle and copied once into a writable
cache.
"""
