"""Tests for the model bridge.

Most tests run the invoker and channel against an in-memory engine double
(see ``conftest.py``). Tests marked ``integration`` build a tiny ONNX graph
and exercise the real ONNX Runtime engine.
"""
