"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the credit core.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. atomicity.py - Failed operations leave no trace
2. same_unit_guard.py - Accounts cannot be settled in their opening unit
3. registry_capacity.py - 256-token registry and 1:1 adapter mapping
4. interest_properties.py - Interest preservation and settlement bounds
5. conservation.py - Token supply is conserved through every lifecycle

These tests use hypothesis for property-based testing.
"""
