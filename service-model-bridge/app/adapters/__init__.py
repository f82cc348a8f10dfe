"""Adapters between the channel payloads and the inference engine.

Typical responsibilities
- Normalize untyped channel input into a float32 buffer (``inputs``)
- Wrap the inference runtime behind a small contract (``engine``)
- Turn engine outputs into flat float lists (``outputs``)
"""
