"""
Prediction Outcome Tracking.

Components:
- schemas: Outcome records and per model version performance metrics
- tracker: Realised outcome intake, confusion counts, accuracy metrics
"""
