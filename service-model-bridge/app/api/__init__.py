"""API subpackage for the model bridge service.

``channel`` implements the method-call boundary; ``routes`` exposes it over
HTTP as a thin layer so no inference logic lives in transport code.
"""
