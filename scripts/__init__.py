"""Utility scripts for operating the model bridge.

Scripts include:
- ``run_model.py``: warm the model cache and run forward passes from the shell.
"""
