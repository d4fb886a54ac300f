# sharing_detector/database/models.py
from sqlalchemy import (
    Column, Integer, String, DateTime, Text, Boolean
)
from sqlalchemy.orm import declarative_base
import datetime
import json

Base = declarative_base()


class DetectionHistory(Base):
    """A detection persisted by a manual or automatic scan; never updated"""
    __tablename__ = 'sharing_detections'

    id = Column(Integer, primary_key=True)
    subscriber_id = Column(String(64), index=True, nullable=False)
    username = Column(String(100), index=True)
    full_name = Column(String(200))
    ip_address = Column(String(45))
    mac_address = Column(String(32), nullable=True)
    service_name = Column(String(100), nullable=True)
    nas_id = Column(Integer, nullable=True)
    nas_name = Column(String(100))
    connection_count = Column(Integer, default=0)
    unique_destinations = Column(Integer, default=0)
    ttl_values = Column(Text)  # JSON-encoded list of ints
    ttl_status = Column(String(50))
    suspicion_level = Column(String(20), index=True)
    confidence_score = Column(Integer)
    reasons = Column(Text)  # JSON-encoded list of strings
    detected_at = Column(DateTime, index=True, default=datetime.datetime.now)
    scan_type = Column(String(20), default='automatic')  # 'automatic' or 'manual'
    created_at = Column(DateTime, default=datetime.datetime.now)

    @classmethod
    def from_result(cls, result, scan_type, detected_at):
        return cls(
            subscriber_id=str(result.subscriber_id or result.username),
            username=result.username,
            full_name=result.full_name,
            ip_address=result.ip_address,
            mac_address=result.mac_address,
            service_name=result.service_name,
            nas_id=result.nas_id,
            nas_name=result.nas_name,
            connection_count=result.connection_count,
            unique_destinations=result.unique_destinations,
            ttl_values=json.dumps(list(result.ttl_values)),
            ttl_status=result.ttl_status.value,
            suspicion_level=result.suspicion_level.value,
            confidence_score=result.confidence_score,
            reasons=json.dumps(list(result.reasons)),
            detected_at=detected_at,
            scan_type=scan_type
        )

    def to_dict(self):
        return {
            'id': self.id,
            'subscriber_id': self.subscriber_id,
            'username': self.username,
            'full_name': self.full_name,
            'ip_address': self.ip_address,
            'mac_address': self.mac_address,
            'service_name': self.service_name,
            'nas_id': self.nas_id,
            'nas_name': self.nas_name,
            'connection_count': self.connection_count,
            'unique_destinations': self.unique_destinations,
            'ttl_values': json.loads(self.ttl_values) if self.ttl_values else [],
            'ttl_status': self.ttl_status,
            'suspicion_level': self.suspicion_level,
            'confidence_score': self.confidence_score,
            'reasons': json.loads(self.reasons) if self.reasons else [],
            'detected_at': self.detected_at.isoformat() if self.detected_at else None,
            'scan_type': self.scan_type
        }


class ScanSettingsRecord(Base):
    """Singleton row (id=1) holding the scan configuration"""
    __tablename__ = 'sharing_detection_settings'

    id = Column(Integer, primary_key=True)
    enabled = Column(Boolean, default=True)
    scan_time = Column(String(5), default='03:00')  # HH:MM, local clock
    retention_days = Column(Integer, default=30)
    min_suspicion_level = Column(String(20), default='medium')
    connection_threshold = Column(Integer, default=500)
    repeat_threshold = Column(Integer, default=3)
    updated_at = Column(DateTime, default=datetime.datetime.now)
