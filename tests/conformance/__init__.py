"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lending market.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Token, share and amount conservation
2. atomicity.py - All-or-nothing operations
3. idempotency.py - Resubmitted intents apply once
4. determinism.py - Identical inputs give identical markets

These tests use hypothesis for property-based testing.
"""
