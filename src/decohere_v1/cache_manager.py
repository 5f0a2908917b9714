from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import orjson

from .audit import AuditLog
from .log import get_logger
from .schemas import (
    CacheAudit,
    CacheHealthMetrics,
    CandidateSelectionAudit,
    RegenerationDetail,
    RegenerationReport,
)
from .utils import read_json

DEFAULT_CONFIDENCE_THRESHOLD = 0.75
HIGH_CONFIDENCE_THRESHOLD = 0.9
EXCELLENT_CONFIDENCE = 0.95
GOOD_CONFIDENCE = 0.85
UNAUDITED_CONFIDENCE = 0.5


def fallback_label(cache_key: str) -> str:
    return f"Type_{cache_key[:8]}"


def _timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


class CacheManager:
    def __init__(
        self,
        cache_dir: Path,
        audit_log: AuditLog,
        *,
        reserved: Iterable[str] = (),
        confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
        high_confidence_threshold: float = HIGH_CONFIDENCE_THRESHOLD,
    ) -> None:
        self.cache_dir = cache_dir
        self.audit_log = audit_log
        self.reserved = set(reserved)
        self.high_confidence_threshold = high_confidence_threshold
        self.logger = get_logger("cache_manager", cache_dir=str(cache_dir))
        self._confidence_threshold = DEFAULT_CONFIDENCE_THRESHOLD
        if confidence_threshold != DEFAULT_CONFIDENCE_THRESHOLD:
            self.set_confidence_threshold(confidence_threshold)

    @property
    def confidence_threshold(self) -> float:
        return self._confidence_threshold

    def set_confidence_threshold(self, threshold: float) -> bool:
        if not 0.0 <= threshold <= 1.0:
            self.logger.warning(
                "invalid confidence threshold",
                threshold=threshold,
                kept=self._confidence_threshold,
            )
            return False
        self._confidence_threshold = threshold
        self.logger.info("confidence threshold updated", threshold=threshold)
        return True

    def _latest(self, type_text: str) -> Optional[CandidateSelectionAudit]:
        return self.audit_log.get_latest_candidate_audit(type_text)

    def audit_cache_entries(self, cache_dir: Optional[Path] = None) -> List[CacheAudit]:
        directory = cache_dir or self.cache_dir
        self.logger.info("starting cache audit", dir=str(directory))
        if not directory.exists():
            self.logger.warning("cache directory does not exist", dir=str(directory))
            return []
        audits: List[CacheAudit] = []
        for path in sorted(directory.iterdir()):
            if not path.is_file() or path.suffix != ".json" or path.name in self.reserved:
                continue
            try:
                stat = path.stat()
                entry = read_json(path)
            except (OSError, orjson.JSONDecodeError) as exc:
                self.logger.warning("failed to audit cache file", file=path.name, error=str(exc))
                continue
            type_text = entry.get("typeText") if isinstance(entry, dict) else None
            if not isinstance(type_text, str) or not type_text:
                type_text = fallback_label(path.stem)
            predicate_ids = entry.get("predicateIds") if isinstance(entry, dict) else None
            audits.append(
                CacheAudit(
                    path=str(path),
                    type_text=type_text,
                    created_at=_timestamp(getattr(stat, "st_birthtime", stat.st_ctime)),
                    last_modified=_timestamp(stat.st_mtime),
                    size_bytes=stat.st_size,
                    confidence=UNAUDITED_CONFIDENCE,
                    predicate_ids=predicate_ids if isinstance(predicate_ids, list) else None,
                )
            )
        self.logger.info(
            "cache audit complete",
            total=len(audits),
            types=len({audit.type_text for audit in audits}),
        )
        return audits

    def _classify(self, audit: CacheAudit, latest: CandidateSelectionAudit) -> RegenerationDetail:
        confidence = latest.confidence
        percent = f"{confidence * 100:.1f}%"
        cache_key = Path(audit.path).name
        if confidence >= self.high_confidence_threshold:
            return RegenerationDetail(
                type_text=audit.type_text,
                cache_key=cache_key,
                action="preserve",
                reason=f"High confidence ({percent})",
                confidence=confidence,
            )
        if confidence >= self._confidence_threshold:
            return RegenerationDetail(
                type_text=audit.type_text,
                cache_key=cache_key,
                action="preserve",
                reason=f"Meets confidence threshold ({percent})",
                confidence=confidence,
            )
        return RegenerationDetail(
            type_text=audit.type_text,
            cache_key=cache_key,
            action="regenerate",
            reason=f"Low confidence ({percent})",
            confidence=confidence,
        )

    def generate_regeneration_report(self, audits: Sequence[CacheAudit]) -> RegenerationReport:
        started = time.perf_counter()
        self.logger.info("generating regeneration report", cache_entries=len(audits))
        details: List[RegenerationDetail] = []
        preserved = 0
        regenerate = 0
        high_confidence = 0
        total_confidence = 0.0
        for audit in audits:
            latest = self._latest(audit.type_text)
            if latest is None:
                regenerate += 1
                details.append(
                    RegenerationDetail(
                        type_text=audit.type_text,
                        cache_key=Path(audit.path).name,
                        action="regenerate",
                        reason="No candidate selection audit found",
                    )
                )
                continue
            audit.confidence = latest.confidence
            audit.selected_candidate = latest.selected_name
            audit.selected_score = latest.selected_score
            total_confidence += latest.confidence
            detail = self._classify(audit, latest)
            details.append(detail)
            if detail.action == "preserve":
                preserved += 1
                if latest.confidence >= self.high_confidence_threshold:
                    high_confidence += 1
            else:
                regenerate += 1
        report = RegenerationReport(
            total_cache_entries=len(audits),
            entries_checked=len(audits),
            entries_preserved=preserved,
            entries_marked_for_regeneration=regenerate,
            high_confidence_preserved=high_confidence,
            average_confidence=total_confidence / len(audits) if audits else 0.0,
            details=details,
            regeneration_time=(time.perf_counter() - started) * 1000.0,
        )
        self.logger.info(
            "regeneration report generated",
            preserved=preserved,
            regenerate=regenerate,
            avg_confidence=round(report.average_confidence * 100, 1),
        )
        return report

    def get_preservable_cache_entries(self, audits: Sequence[CacheAudit]) -> List[CacheAudit]:
        preservable: List[CacheAudit] = []
        for audit in audits:
            latest = self._latest(audit.type_text)
            if latest is not None and latest.confidence >= self._confidence_threshold:
                preservable.append(audit)
        return preservable

    def get_cache_entries_needing_regeneration(self, audits: Sequence[CacheAudit]) -> List[CacheAudit]:
        stale: List[CacheAudit] = []
        for audit in audits:
            latest = self._latest(audit.type_text)
            if latest is None or latest.confidence < self._confidence_threshold:
                stale.append(audit)
        return stale

    def get_cache_health_metrics(self, audits: Sequence[CacheAudit]) -> CacheHealthMetrics:
        confidences = []
        for audit in audits:
            latest = self._latest(audit.type_text)
            confidences.append(latest.confidence if latest is not None else 0.0)
        excellent = sum(1 for value in confidences if value >= EXCELLENT_CONFIDENCE)
        good = sum(1 for value in confidences if GOOD_CONFIDENCE <= value < EXCELLENT_CONFIDENCE)
        acceptable = sum(
            1 for value in confidences if DEFAULT_CONFIDENCE_THRESHOLD <= value < GOOD_CONFIDENCE
        )
        poor = sum(1 for value in confidences if value < DEFAULT_CONFIDENCE_THRESHOLD)
        total = len(audits)

        def _percent(count: int) -> float:
            return count / total * 100.0 if total else 0.0

        return CacheHealthMetrics(
            total=total,
            excellent=excellent,
            good=good,
            acceptable=acceptable,
            poor=poor,
            percentage_excellent=_percent(excellent),
            percentage_good=_percent(good),
            percentage_acceptable=_percent(acceptable),
            percentage_poor=_percent(poor),
        )
