"""Services Layer — async orchestration around server calls.

Invariants:
    - Services depend on core/ only; IO reaches them through injected callables
"""
