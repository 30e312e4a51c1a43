"""
Functional tests for Tidemark.

These tests drive complete sync cycles through the engine against a scripted
in-process remote and real local stores.

Usage:
    pytest tests/functional/
"""
