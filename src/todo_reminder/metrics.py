"""
一个简单的运行时指标收集类，用于统计提醒的收发、用户操作与后端同步情况，方便后续扩展和监控。
"""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass
class RuntimeMetrics:
    received_count: int = 0
    fallback_count: int = 0
    dispatched_count: int = 0
    completed_count: int = 0
    snoozed_count: int = 0
    dismissed_count: int = 0
    promoted_count: int = 0
    rolled_back_count: int = 0
    backend_call_count: int = 0
    backend_error_count: int = 0
    backend_total_latency_ms: float = 0.0
    persistence_error_count: int = 0
    last_dispatch_at: float | None = None

    def record_received(self, fallback: bool = False) -> None:
        self.received_count += 1
        if fallback:
            self.fallback_count += 1

    def record_dispatched(self) -> None:
        self.dispatched_count += 1
        self.last_dispatch_at = time.time()

    def record_action(self, action: str) -> None:
        if action == "completed":
            self.completed_count += 1
        elif action == "snoozed":
            self.snoozed_count += 1
        elif action == "dismissed":
            self.dismissed_count += 1

    def record_promoted(self, count: int = 1) -> None:
        self.promoted_count += count

    def record_rolled_back(self) -> None:
        self.rolled_back_count += 1

    def record_backend_call(self, latency_ms: float, error: bool = False) -> None:
        self.backend_call_count += 1
        self.backend_total_latency_ms += max(0.0, latency_ms)
        if error:
            self.backend_error_count += 1

    def record_persistence_error(self) -> None:
        self.persistence_error_count += 1

    def snapshot(self) -> dict:
        avg_latency_ms = 0.0
        if self.backend_call_count > 0:
            avg_latency_ms = self.backend_total_latency_ms / self.backend_call_count

        return {
            "received_count": self.received_count,
            "fallback_count": self.fallback_count,
            "dispatched_count": self.dispatched_count,
            "completed_count": self.completed_count,
            "snoozed_count": self.snoozed_count,
            "dismissed_count": self.dismissed_count,
            "promoted_count": self.promoted_count,
            "rolled_back_count": self.rolled_back_count,
            "backend_call_count": self.backend_call_count,
            "backend_error_count": self.backend_error_count,
            "backend_avg_latency_ms": round(avg_latency_ms, 2),
            "persistence_error_count": self.persistence_error_count,
            "last_dispatch_at_epoch": self.last_dispatch_at,
            "last_dispatch_at_utc": (
                time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(self.last_dispatch_at))
                if self.last_dispatch_at is not None
                else None
            ),
        }


runtime_metrics = RuntimeMetrics()


__all__ = ["RuntimeMetrics", "runtime_metrics"]
