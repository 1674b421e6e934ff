"""
Test suite for the MemoryLane pipeline.

- Unit tests for models, services, handlers and utilities
- Integration tests driving the HTTP surface end to end
"""
