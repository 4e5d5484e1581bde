"""API Resilience Implementations.

Contains the retry controller (exponential backoff with jitter) and the
bounded dispatcher that limits concurrent batches per credential.
Bounded Context: API Resilience
"""
