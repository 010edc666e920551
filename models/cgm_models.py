"""
CGM event detection payload models.
"""
from datetime import datetime
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, Field, ConfigDict


class CgmAnalysisEnum(str, Enum):
    ALL_EVENTS = "all-events"
    HYPO = "hypo"
    HYPER = "hyper"
    GRID = "grid"
    MAXIMA_GRID = "maxima-grid"


class CgmReading(BaseModel):
    """
    Model for a single CGM reading.
    """
    model_config = ConfigDict(populate_by_name=True)

    subject_id: str = Field(description="Subject identifier")
    timestamp: datetime = Field(description="Reading time")
    glucose: Optional[float] = Field(default=None, description="Glucose in mg/dL")


class CgmEventSummaryRecord(BaseModel):
    """
    Model for one (subject, type, level) row of the unified event summary.
    """
    subject_id: str = Field(description="Subject identifier")
    type: str = Field(description="Event type (hypo or hyper)")
    level: str = Field(description="Event level")
    avg_ep_per_day: float = Field(default=0.0, description="Episodes per day")
    avg_ep_duration: float = Field(default=0.0, description="Average episode duration in minutes")
    avg_ep_gl: float = Field(default=0.0, description="Average in-episode glucose in mg/dL")
    total_episodes: int = Field(default=0, description="Total episodes")


class CgmEventTotalRecord(BaseModel):
    """
    Model for per-subject totals of a single event category.
    """
    subject_id: str = Field(description="Subject identifier")
    total_events: int = Field(default=0, description="Total events")
    avg_ep_per_day: float = Field(default=0.0, description="Episodes per day")
    avg_ep_duration: float = Field(default=0.0, description="Average episode duration in minutes")
    avg_ep_gl: float = Field(default=0.0, description="Average in-episode glucose in mg/dL")


class CgmEpisodeRecord(BaseModel):
    """
    Model for a committed episode.
    """
    subject_id: str = Field(description="Subject identifier")
    start_time: datetime = Field(description="Start time")
    start_glucose: Optional[float] = Field(default=None, description="Glucose at start")
    end_time: datetime = Field(description="End time")
    end_glucose: Optional[float] = Field(default=None, description="Glucose at end")
    start_index: int = Field(description="1-based row of the start reading")
    end_index: int = Field(description="1-based row of the end reading")
    duration_minutes: float = Field(description="Elapsed minutes between start and end")
    average_glucose: Optional[float] = Field(default=None, description="Average glucose within the episode")
    duration_below_54_minutes: Optional[float] = Field(default=None, description="Minutes below 54 mg/dL")


class CgmGridPointRecord(BaseModel):
    """
    Model for a GRID episode start.
    """
    subject_id: str = Field(description="Subject identifier")
    time: datetime = Field(description="Reading time")
    glucose: Optional[float] = Field(default=None, description="Glucose in mg/dL")
    index: int = Field(description="1-based row of the reading")


class CgmMaximaRecord(BaseModel):
    """
    Model for a GRID point paired with its peak.
    """
    subject_id: str = Field(description="Subject identifier")
    grid_time: datetime = Field(description="GRID point time")
    grid_glucose: Optional[float] = Field(default=None, description="GRID point glucose")
    maxima_time: datetime = Field(description="Peak time")
    maxima_glucose: Optional[float] = Field(default=None, description="Peak glucose")
    time_to_peak_minutes: Optional[float] = Field(default=None, description="Minutes from GRID point to peak")
    grid_index: Optional[int] = Field(default=None, description="1-based row of the GRID point")
    maxima_index: Optional[int] = Field(default=None, description="1-based row of the peak")


class CgmBatchResponse(BaseModel):
    """
    Response model for a batch analysis run.
    """
    analysis: CgmAnalysisEnum = Field(description="Analysis that produced the payload")
    summary: Optional[List[CgmEventSummaryRecord]] = Field(default=None, description="Unified event summary")
    totals: Optional[List[CgmEventTotalRecord]] = Field(default=None, description="Per-subject totals")
    episodes: Optional[List[CgmEpisodeRecord]] = Field(default=None, description="Committed episodes")
    grid_points: Optional[List[CgmGridPointRecord]] = Field(default=None, description="GRID episode starts")
    maxima: Optional[List[CgmMaximaRecord]] = Field(default=None, description="GRID points paired with peaks")
