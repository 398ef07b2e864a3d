"""
Settlement Milestone Timeline Tracking.

Components:
- schemas: Milestones, delays, alerts, SLAs and timeline views
- templates: Per security type milestone templates and default SLAs
- state: Milestone transition rules and derived instruction status
- delays: Delay cause classification, impact and mitigation
- tracker: Timeline lifecycle, milestone updates, periodic scan, alerts
- reporting: SLA compliance and performance reports
- scheduler: APScheduler job driving the periodic scan
"""
