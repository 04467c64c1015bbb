"""
Conversation Orchestration

Session registry, replay, pacing, rate-limit backoff and turn orchestration.
"""
