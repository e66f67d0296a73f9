"""
Test suite for the case import service.

Run all tests: pytest
Run unit tests only: pytest tests/unit/
Run specific file: pytest tests/unit/test_finalize_service.py -v
"""
