"""Core Layer — pure domain logic: taxonomy, classification, boundary contracts.

Invariants:
    - No module in core/ imports from services/ or infrastructure/
    - Nothing in core/ performs IO or sleeps
"""
