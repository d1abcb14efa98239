from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

ChangeKindName = Literal["Added", "Removed", "Modified"]
DimensionName = Literal["Reference", "DataFlow", "Contract", "Config", "Consistency"]

# ---- Scan Models ----

class ScanRequest(BaseModel):
    """Files to scan, already read by the caller."""
    files: Dict[str, str]  # path -> content
    rebuild: bool = False  # Drop the graph and rebuild it from these files
    jobs: Optional[int] = Field(default=None, ge=1)

class ScanResponse(BaseModel):
    status: Literal["completed", "cancelled"]
    graph_version: int
    merged: List[str] = []
    diagnostics: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []
    unhandled: List[str] = []
    gaps: List[Dict[str, str]] = []
    metrics: Dict[str, float] = {}

# ---- Impact Models ----

class ImpactRequest(BaseModel):
    changes: Dict[str, ChangeKindName]  # entity id -> change kind
    dimensions: Optional[List[DimensionName]] = None  # default: all
    max_depth: Optional[int] = Field(default=None, ge=0)
    direction: Optional[Literal["forward", "backward"]] = None  # default: both
    include_plan: bool = True

class ImpactResponse(BaseModel):
    impact: Dict[str, Any]
    plan: Optional[Dict[str, Any]] = None

# ---- Report Models ----

class ReportRequest(BaseModel):
    change_sets: List[Dict[str, ChangeKindName]] = []
    dimensions: Optional[List[DimensionName]] = None
    max_depth: Optional[int] = Field(default=None, ge=0)

class ContractsResponse(BaseModel):
    declared_side: Literal["frontend", "backend"]
    snapshot_version: int
    pairs: List[Dict[str, Any]] = []
    findings: List[Dict[str, Any]] = []
