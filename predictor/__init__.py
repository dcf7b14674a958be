"""
Predictor Service - Tournament Prediction Platform

Responsibilities:
- Tournament domain model (tournaments, bracket groups, teams, matches)
- Prediction groups with invite codes and a hard member cap
- Match-score and round-winner predictions
- Scoring and leaderboards over materialized per-user totals
"""
