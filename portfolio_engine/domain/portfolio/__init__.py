"""
Portfolio bounded context: domain layer.

This module contains all domain logic for the portfolio context:
- Holdings ledger arithmetic
- Transaction settlement state machine
- Optimization lifecycle gating
- Recommendation application
"""
