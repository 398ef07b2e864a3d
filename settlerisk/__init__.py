"""
SettleRisk: Settlement Failure Prediction & Timeline Tracking.

Architecture:
    prediction/  - Feature extraction, scoring members, pattern library, ensemble
    risk/        - Credit / liquidity / operational / market decomposition
    timeline/    - Milestone state machine, delays, alerts, SLA reporting, scan job
    outcomes/    - Feedback loop: realised outcomes → model performance metrics
    events.py    - In-memory event bus (publish / subscribe, dead letter queue)
    platform.py  - Facade wiring the subsystems together

All state is held in memory. The engines are pure and synchronous; the
services around them are asyncio-based and publish domain events.
"""

__version__ = "1.0.0"
