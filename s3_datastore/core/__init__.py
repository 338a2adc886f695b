"""
Core data store logic.

This module is framework-agnostic - it doesn't import boto3 or the
settings layer. Remote calls go through the StorageBackend protocol, so
the store can be tested against an in-memory backend.
"""
