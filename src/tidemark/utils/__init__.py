"""
Shared utilities for Tidemark: logging, errors and configuration.
"""
