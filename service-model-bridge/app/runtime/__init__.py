"""Inference runtime: the invoker, its error taxonomy and metrics facade."""
