"""
schemas.py
==========
Pydantic models used for validating incoming requests and
structuring outgoing API responses. Fields travel as camelCase
on the wire and snake_case in Python.
"""

import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .models import CheckInMethod, Priority, ServiceType, SessionStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CheckInRequest(CamelModel):
    """Request body for checking a patient in."""
    patient_id: int
    service_type: ServiceType = ServiceType.consultation
    priority: Priority = Priority.normal
    doctor_id: Optional[int] = None
    check_in_method: CheckInMethod = CheckInMethod.staff_assisted
    notes: Optional[str] = Field(default=None, max_length=500)


class VitalSignsRequest(CamelModel):
    """Vital signs taken by the nurse. Ranges are checked by the lifecycle."""
    temperature: Optional[float] = None
    heart_rate: Optional[int] = None
    systolic_bp: Optional[int] = None
    diastolic_bp: Optional[int] = None
    respiratory_rate: Optional[int] = None
    oxygen_saturation: Optional[float] = None
    weight: Optional[float] = None
    height: Optional[float] = None
    clinical_notes: Optional[str] = None

    def readings(self) -> Dict[str, Optional[float]]:
        return self.model_dump(exclude={"clinical_notes"})


class StartCheckupRequest(CamelModel):
    doctor_id: int


class CompleteCheckupRequest(CamelModel):
    notes: Optional[str] = None
    diagnosis: Optional[str] = None
    prescriptions: List[Any] = Field(default_factory=list)


class CancelRequest(CamelModel):
    reason: Optional[str] = Field(default=None, max_length=200)


class SessionResponse(CamelModel):
    """Response model for a check-in session."""
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: int
    patient_id: int
    service_type: ServiceType
    priority: Priority
    check_in_method: CheckInMethod
    status: SessionStatus
    assigned_doctor: Optional[int] = None
    vital_signs_collected: bool
    vital_signs: Optional[Dict[str, float]] = None
    doctor_notified: bool
    notes: Optional[str] = None
    diagnosis: Optional[str] = None
    prescriptions: Optional[List[Any]] = None
    created_at: datetime.datetime
    updated_at: datetime.datetime
    vitals_recorded_at: Optional[datetime.datetime] = None
    notified_at: Optional[datetime.datetime] = None
    started_at: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None
    cancelled_at: Optional[datetime.datetime] = None
    cancellation_reason: Optional[str] = None


class VitalSignsRecordResponse(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )

    id: int
    patient_id: int
    session_id: int
    temperature: Optional[float] = None
    heart_rate: Optional[int] = None
    systolic_bp: Optional[int] = None
    diastolic_bp: Optional[int] = None
    respiratory_rate: Optional[int] = None
    oxygen_saturation: Optional[float] = None
    weight: Optional[float] = None
    height: Optional[float] = None
    clinical_notes: Optional[str] = None
    recorded_by: Optional[str] = None
    recorded_at: datetime.datetime
