"""
Test fixtures for Tidemark.

Provides a scripted fake remote, a failing store and record data.
"""

from .remote_fixtures import FakeRemote, FailingStore, RecordFixtures

__all__ = [
    "FakeRemote",
    "FailingStore",
    "RecordFixtures",
]
