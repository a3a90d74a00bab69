"""Central registry for Prometheus metrics used by the report engine."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REPORT_CREATED_TOTAL = Counter(
	"mod_report_created_total",
	"Reports created or merged by the intake pipeline",
	["reason", "score"],
)

REPORT_SUPPRESSED_TOTAL = Counter(
	"mod_report_suppressed_total",
	"Report candidates dropped before scoring",
	["reason", "cause"],
)

REPORT_CLOSED_TOTAL = Counter(
	"mod_report_closed_total",
	"Report close operations",
	["mode"],
)

REPORT_HIGHEST_SCORE = Gauge(
	"mod_report_highest_score",
	"Highest open unclaimed report score per room",
	["room"],
)

REPORT_COMM_BURST_TOTAL = Counter(
	"mod_report_comm_burst_total",
	"Communication report burst alerts sent",
)

CHEAT_AUTO_REPORT_TOTAL = Counter(
	"mod_cheat_auto_report_total",
	"Automated cheat reports submitted by detectors",
)

INQUIRY_TRANSITIONS_TOTAL = Counter(
	"mod_inquiry_transitions_total",
	"Inquiry claim state transitions",
	["transition"],
)

INQUIRY_EXPIRED_TOTAL = Counter(
	"mod_inquiry_expired_total",
	"Inquiries released by the expiry sweep",
)

SEQUENCER_REJECTED_TOTAL = Counter(
	"mod_sequencer_rejected_total",
	"Tasks refused because the sequencer backlog was full",
	["name"],
)

SEQUENCER_TIMEOUTS_TOTAL = Counter(
	"mod_sequencer_timeouts_total",
	"Sequenced tasks abandoned after exceeding their budget",
	["name"],
)

SEQUENCER_TASK_SECONDS = Histogram(
	"mod_sequencer_task_duration_seconds",
	"Execution time of sequenced tasks",
	["name"],
	buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 5.0, 20.0),
)

ROOM_SCORE_REFRESH_SECONDS = Histogram(
	"mod_room_score_refresh_seconds",
	"Time spent recomputing the room score snapshot",
	buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)
