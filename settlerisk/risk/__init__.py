"""
Settlement Risk Scoring.

Components:
- schemas: Assessment records, thresholds and alert levels
- scoring: Credit / liquidity / operational / market decomposition
- service: Active assessments, audit history and risk events
"""
