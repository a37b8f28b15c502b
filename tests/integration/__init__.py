"""
tests/integration/
~~~~~~~~~~~~~~~~~~
Integration tests that call real external APIs.

These tests are SKIPPED by default. To run them:

    INTEGRATION_TESTS=1 pytest tests/integration/ -v

Rate Limit Considerations:
- ipapi.co: ~1000 req/day anonymous, bursts get 429 - avoid in CI
- Telegram is never called from tests
"""
