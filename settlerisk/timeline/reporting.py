"""
Settlement performance reporting.

SLA compliance over a reporting window: on-time versus late versus failed
settlements, average time to settle, the most common delay causes and the
counterparties most often responsible for late or failed settlements.
"""

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import Optional

import structlog

from settlerisk.schemas import InstructionStatus, ensure_utc, utcnow
from settlerisk.timeline.schemas import (
    CounterpartyPerformance,
    PerformanceReport,
    ReasonCount,
    ReportPeriod,
    SettlementTimeline,
)

logger = structlog.get_logger(__name__)

PERIOD_WINDOWS: dict[ReportPeriod, timedelta] = {
    ReportPeriod.DAILY: timedelta(days=1),
    ReportPeriod.WEEKLY: timedelta(days=7),
    ReportPeriod.MONTHLY: timedelta(days=30),
}

TOP_N = 10


def settlement_hours(view: SettlementTimeline) -> Optional[float]:
    settled_at = view.instruction.actual_settlement_time
    if settled_at is None:
        return None
    return (settled_at - view.instruction.trade_date).total_seconds() / 3600.0


def build_performance_report(
    views: list[SettlementTimeline],
    period: ReportPeriod = ReportPeriod.DAILY,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> PerformanceReport:
    end = ensure_utc(end) or utcnow()
    start = ensure_utc(start) or end - PERIOD_WINDOWS[period]
    in_window = [v for v in views if start <= v.instruction.trade_date <= end]

    on_time = late = failed = 0
    durations: list[float] = []
    reasons: Counter[str] = Counter()
    per_counterparty: dict[str, list[int]] = defaultdict(lambda: [0, 0])
    statuses: Counter[InstructionStatus] = Counter()

    for view in in_window:
        instruction = view.instruction
        statuses[instruction.status] += 1
        reasons.update(d.delay_type.value for d in view.delays)
        bucket = per_counterparty[instruction.counterparty_id]
        bucket[0] += 1

        if instruction.status == InstructionStatus.FAILED:
            failed += 1
            bucket[1] += 1
        elif instruction.status == InstructionStatus.SETTLED:
            hours = settlement_hours(view)
            if hours is None:
                continue
            durations.append(hours)
            if hours <= view.sla.target_settlement_hours:
                on_time += 1
            else:
                late += 1
                bucket[1] += 1

    finished = on_time + late + failed
    worst = [
        CounterpartyPerformance(
            counterparty_id=cp,
            total=total,
            late_or_failed=bad,
            failure_rate=bad / total,
        )
        for cp, (total, bad) in per_counterparty.items()
        if bad > 0
    ]
    worst.sort(key=lambda c: (c.failure_rate, c.late_or_failed), reverse=True)

    report = PerformanceReport(
        period=period,
        period_start=start,
        period_end=end,
        total_instructions=len(in_window),
        settled_on_time=on_time,
        settled_late=late,
        failed=failed,
        average_settlement_hours=round(sum(durations) / len(durations), 2) if durations else 0.0,
        sla_compliance=on_time / finished if finished else 1.0,
        top_delay_reasons=[
            ReasonCount(reason=r, count=c) for r, c in reasons.most_common(TOP_N)
        ],
        worst_counterparties=worst[:TOP_N],
        status_breakdown=dict(statuses),
    )
    logger.info(
        "performance_report_generated",
        period=period.value,
        total=report.total_instructions,
        compliance=round(report.sla_compliance, 4),
    )
    return report
