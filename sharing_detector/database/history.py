# sharing_detector/database/history.py
"""
Append-only detection history and the read models derived from it.

Trends and repeat offenders are computed from the stored rows on every
call, so deleting old rows is all retention needs to do.
"""
import logging
import threading
from datetime import datetime, timedelta, time as dt_time

import pandas as pd
from sqlalchemy import func, case

from sharing_detector.database.models import DetectionHistory

logger = logging.getLogger(__name__)


class HistoryStore:
    def __init__(self, db_manager, clock=datetime.now):
        self.db = db_manager
        self.clock = clock
        # Serialises inserts and retention deletes
        self._write_lock = threading.Lock()

    def save_results(self, results, scan_type, detected_at=None):
        """Persist detection results in one transaction; returns the number saved"""
        detected_at = detected_at or self.clock()
        records = [DetectionHistory.from_result(r, scan_type, detected_at) for r in results]
        if not records:
            return 0
        with self._write_lock:
            with self.db.session_scope() as session:
                session.add_all(records)
        logger.debug(f"Saved {len(records)} {scan_type} detections")
        return len(records)

    def purge_older_than(self, retention_days, now=None):
        """
        Delete records detected before `now - retention_days`.

        A record exactly at the cutoff is kept.
        """
        now = now or self.clock()
        cutoff = now - timedelta(days=retention_days)
        with self._write_lock:
            with self.db.session_scope() as session:
                deleted = session.query(DetectionHistory).filter(
                    DetectionHistory.detected_at < cutoff
                ).delete(synchronize_session=False)
        if deleted:
            logger.info(f"Cleaned up {deleted} detection records older than {retention_days} days")
        return deleted

    def purge_all(self):
        with self._write_lock:
            with self.db.session_scope() as session:
                deleted = session.query(DetectionHistory).delete(synchronize_session=False)
        logger.info(f"Purged {deleted} detection records")
        return deleted

    def _filtered(self, session, days, suspicion_level=None, username=None, now=None):
        now = now or self.clock()
        query = session.query(DetectionHistory).filter(
            DetectionHistory.detected_at >= now - timedelta(days=days)
        )
        if suspicion_level:
            query = query.filter(DetectionHistory.suspicion_level == getattr(suspicion_level, 'value', suspicion_level))
        if username:
            query = query.filter(DetectionHistory.username.ilike(f"%{username}%"))
        return query

    def history(self, days=7, suspicion_level=None, username=None, limit=50, offset=0, now=None):
        """Records within the last `days` days matching the filters, newest first"""
        with self.db.session_scope() as session:
            query = self._filtered(session, days, suspicion_level, username, now)
            query = query.order_by(DetectionHistory.detected_at.desc(), DetectionHistory.id.desc())
            if offset:
                query = query.offset(offset)
            if limit:
                query = query.limit(limit)
            return query.all()

    def count_history(self, days=7, suspicion_level=None, username=None, now=None):
        with self.db.session_scope() as session:
            return self._filtered(session, days, suspicion_level, username, now).count()

    def trends(self, days=7, now=None):
        """
        One bucket per calendar day for the last `days` days (today included),
        oldest first. Days without detections are present with zero counts.
        """
        days = max(int(days), 1)
        now = now or self.clock()
        first_day = now.date() - timedelta(days=days - 1)
        window_start = datetime.combine(first_day, dt_time.min)
        window_end = datetime.combine(now.date() + timedelta(days=1), dt_time.min)

        with self.db.session_scope() as session:
            rows = session.query(
                DetectionHistory.detected_at,
                DetectionHistory.suspicion_level,
                DetectionHistory.confidence_score
            ).filter(
                DetectionHistory.detected_at >= window_start,
                DetectionHistory.detected_at < window_end
            ).all()

        index = pd.date_range(start=first_day, periods=days, freq='D').date
        df = pd.DataFrame([tuple(r) for r in rows], columns=['detected_at', 'suspicion_level', 'confidence_score'])

        if df.empty:
            daily = pd.DataFrame(0, index=index,
                                 columns=['total_detected', 'high_risk_count', 'medium_risk_count'])
            daily['avg_confidence'] = 0.0
        else:
            df['date'] = pd.to_datetime(df['detected_at']).dt.date
            df['high'] = (df['suspicion_level'] == 'high').astype(int)
            df['medium'] = (df['suspicion_level'] == 'medium').astype(int)
            daily = df.groupby('date').agg(
                total_detected=('suspicion_level', 'size'),
                high_risk_count=('high', 'sum'),
                medium_risk_count=('medium', 'sum'),
                avg_confidence=('confidence_score', 'mean')
            ).reindex(index)
            daily = daily.fillna(0)

        return [
            {
                'date': day.isoformat(),
                'total_detected': int(row['total_detected']),
                'high_risk_count': int(row['high_risk_count']),
                'medium_risk_count': int(row['medium_risk_count']),
                'avg_confidence': round(float(row['avg_confidence']), 1)
            }
            for day, row in daily.iterrows()
        ]

    def repeat_offenders(self, days=30, min_count=3, now=None):
        """Subscribers detected at least `min_count` times in the window, most detections first"""
        now = now or self.clock()
        cutoff = now - timedelta(days=days)
        detection_count = func.count(DetectionHistory.id)
        last_detected = func.max(DetectionHistory.detected_at)

        with self.db.session_scope() as session:
            rows = session.query(
                DetectionHistory.subscriber_id,
                func.max(DetectionHistory.username).label('username'),
                func.max(DetectionHistory.full_name).label('full_name'),
                detection_count.label('detection_count'),
                func.sum(case((DetectionHistory.suspicion_level == 'high', 1), else_=0)).label('high_risk_count'),
                func.avg(DetectionHistory.confidence_score).label('avg_confidence'),
                last_detected.label('last_detected_at')
            ).filter(
                DetectionHistory.detected_at >= cutoff
            ).group_by(
                DetectionHistory.subscriber_id
            ).having(
                detection_count >= min_count
            ).order_by(
                detection_count.desc(), last_detected.desc()
            ).all()

        return [
            {
                'subscriber_id': row.subscriber_id,
                'username': row.username,
                'full_name': row.full_name,
                'detection_count': int(row.detection_count),
                'high_risk_count': int(row.high_risk_count or 0),
                'avg_confidence': round(float(row.avg_confidence or 0), 1),
                'last_detected_at': _isoformat(row.last_detected_at)
            }
            for row in rows
        ]


def _isoformat(value):
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.isoformat()
