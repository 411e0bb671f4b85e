from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field

from adrlens.model import (
    ADRInventoryItem,
    ADRMetadata,
    ADRProposal,
    DriftResult,
    ScanSession,
    TreeNode,
)
from adrlens.status import render_status


class LocationDTO(BaseModel):
    file: str
    line: Optional[int] = None
    column: Optional[int] = None


class DriftResultDTO(BaseModel):
    id: str
    title: str
    severity: str
    level: str
    category: str
    description: str
    suggestion: Optional[str] = None
    location: Optional[LocationDTO] = None
    confidence: Optional[float] = None
    ml_score: Optional[float] = Field(default=None, serialization_alias="mlScore")


class ScanResponse(BaseModel):
    results: List[DriftResultDTO] = []
    drift_count: int = 0
    exit_code: int = 0
    errors: List[str] = []


class MetadataDTO(BaseModel):
    path: str
    title: Optional[str] = None
    status: Optional[str] = None
    date: Optional[str] = None
    summary: Optional[str] = None
    tags: List[str] = []


class StatusIconDTO(BaseModel):
    name: str
    color: Optional[str] = None


class TreeNodeDTO(BaseModel):
    label: str
    kind: str
    uri: str
    path: str
    description: Optional[str] = None
    icon: StatusIconDTO
    tooltip: Optional[str] = None
    metadata: Optional[MetadataDTO] = None


class TreeResponse(BaseModel):
    nodes: List[TreeNodeDTO] = []


class StatusDTO(BaseModel):
    state: str
    drift_count: int
    last_scan_time: Optional[str] = None
    message: Optional[str] = None
    scope: Optional[str] = None
    text: str
    tooltip: str
    level: str


class InventoryItemDTO(BaseModel):
    title: str
    status: str
    date: str
    file: str
    summary: Optional[str] = None


class InventoryResponse(BaseModel):
    items: List[InventoryItemDTO] = []


class ProposalDTO(BaseModel):
    title: str
    context: str
    decision: str
    consequences: str
    confidence: str


class PathResponse(BaseModel):
    path: str


class MessageResponse(BaseModel):
    message: str


def drift_result_dto(result: DriftResult) -> DriftResultDTO:
    location = result.location
    return DriftResultDTO(
        id=result.id,
        title=result.title,
        severity=result.severity,
        level=str(result.level),
        category=result.category,
        description=result.description,
        suggestion=result.suggestion,
        location=(
            LocationDTO(file=location.file, line=location.line, column=location.column)
            if location is not None
            else None
        ),
        confidence=result.confidence,
        ml_score=result.ml_score,
    )


def metadata_dto(path: str, metadata: ADRMetadata) -> MetadataDTO:
    return MetadataDTO(
        path=path,
        title=metadata.title,
        status=metadata.status,
        date=metadata.date,
        summary=metadata.summary,
        tags=list(metadata.tags),
    )


def tree_node_dto(node: TreeNode) -> TreeNodeDTO:
    return TreeNodeDTO(
        label=node.label,
        kind=str(node.kind),
        uri=node.uri,
        path=str(node.path),
        description=node.description,
        icon=StatusIconDTO(name=node.icon.name, color=node.icon.color),
        tooltip=node.tooltip,
        metadata=(
            metadata_dto(str(node.path), node.metadata) if node.metadata is not None else None
        ),
    )


def status_dto(session: ScanSession) -> StatusDTO:
    rendered = render_status(session)
    return StatusDTO(
        state=str(session.state),
        drift_count=session.drift_count,
        last_scan_time=(
            session.last_scan_time.isoformat() if session.last_scan_time is not None else None
        ),
        message=session.message,
        scope=str(session.scope) if session.scope is not None else None,
        text=rendered.text,
        tooltip=rendered.tooltip,
        level=rendered.level,
    )


def inventory_dto(items: List[ADRInventoryItem]) -> InventoryResponse:
    return InventoryResponse(
        items=[
            InventoryItemDTO(
                title=item.title,
                status=item.status,
                date=item.date,
                file=item.file,
                summary=item.summary,
            )
            for item in items
        ]
    )


def proposal_dto(proposal: ADRProposal) -> ProposalDTO:
    return ProposalDTO(
        title=proposal.title,
        context=proposal.context,
        decision=proposal.decision,
        consequences=proposal.consequences,
        confidence=proposal.confidence,
    )
