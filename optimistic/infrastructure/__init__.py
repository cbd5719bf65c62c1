"""Infrastructure Layer — HTTP transport, credentials, notifications, logging.

Invariants:
    - All outbound requests pass through RetryPolicy
    - Transport failures surface as raw httpx errors for ErrorClassifier
"""
