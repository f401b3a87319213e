"""
Booking Bot test suite.

Unit tests run against in-memory context stores and mocked repository,
extractor and payment collaborators; no database, Redis or Stripe needed.

Running Tests:
    pytest tests/unit -v
"""
