"""Municipal Innovation Index scoring engine.

Aggregates challenges, pilots and partnerships into six dimension scores,
combines them into a 0-100 overall index, ranks municipalities nationally,
and derives trend and benchmark insights.

Deterministic -- no LLM calls.
"""
