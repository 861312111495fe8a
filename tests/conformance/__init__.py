"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of a time-locked vault.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. construction.py - A vault exists only with a future unlock time and its deposit
2. gating.py - Time first, then ownership, guard every withdrawal
3. single_release.py - One release of the full balance, conservation, idempotency
4. atomicity.py - Rejected or reverted operations leave no trace

These tests use hypothesis for property-based testing.
"""
