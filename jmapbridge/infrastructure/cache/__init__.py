"""Session Cache Implementation.

Keeps one discovered session per credential context in memory, with
explicit invalidation instead of time-based expiry.
Bounded Context: Session Management
"""
