"""
Settlement Failure Prediction.

Components:
- schemas: Prediction input/output records, patterns, model descriptor
- features: Feature extraction and categorical scoring
- models: Pluggable scoring members (linear, rule-based, network)
- patterns: Failure pattern library, matching and detection
- ensemble: Pure blend of members and pattern uplift with explanation
- service: Model registry, prediction history, queries and events
"""
