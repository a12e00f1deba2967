"""
Disaster-recovery testing: replication settings, the DR pipeline and RTO.
"""

from .replication import ReplicationConfig
from .rto import RTOMeasurement, RTOMeter, assess_rto
from .steps import DR_TARGET_ID, dr_test_pipeline, dr_test_steps

__all__ = [
    "DR_TARGET_ID",
    "RTOMeasurement",
    "RTOMeter",
    "ReplicationConfig",
    "assess_rto",
    "dr_test_pipeline",
    "dr_test_steps",
]
