"""Pydantic schemas for the scan API wire format.

Field names on the wire are camelCase (``scanId``, ``threatId``,
``threatsFound``, ``fileInfo``) and are produced through aliases; FastAPI
serialises response models by alias.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from peroxide.core.models import FileInfo, Finding, ProgressEntry, ScanRecord


class UploadResponse(BaseModel):
    """Returned by ``POST /api/upload``."""

    model_config = ConfigDict(populate_by_name=True)

    scan_id: str = Field(..., alias="scanId")


class ThreatOut(BaseModel):
    """Serialisable form of a :class:`~peroxide.core.models.Finding`."""

    model_config = ConfigDict(populate_by_name=True)

    type: str
    details: str
    severity: str
    threat_id: str = Field(..., alias="threatId")

    @classmethod
    def from_finding(cls, finding: Finding) -> "ThreatOut":
        return cls(
            type=finding.kind,
            details=finding.details,
            severity=finding.severity.value,
            threat_id=finding.finding_id,
        )


class ScanStatsOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    threats_found: int = Field(..., alias="threatsFound")
    malicious: int
    suspicious: int
    neutral: int


class FileInfoOut(BaseModel):
    filename: str
    size: int
    sha256: str

    @classmethod
    def from_file_info(cls, info: FileInfo) -> "FileInfoOut":
        return cls(filename=info.original_name, size=info.size_bytes, sha256=info.digest_hex)


class ScanResultOut(BaseModel):
    """Returned by ``GET /api/scan-result/{scanId}``.

    Attributes:
        status: ``scanning``, ``safe``, ``suspicious``, ``unsafe`` or ``error``.
        threats: Findings in detection order.
        stats: Aggregate finding counts.
        logs: Full progress history rendered as ``"[NN%] message"`` lines.
        file_info: Submission metadata; omitted when unavailable.
    """

    model_config = ConfigDict(populate_by_name=True)

    status: str
    threats: list[ThreatOut]
    stats: ScanStatsOut
    logs: list[str]
    file_info: FileInfoOut | None = Field(default=None, alias="fileInfo")

    @classmethod
    def from_record(cls, record: ScanRecord) -> "ScanResultOut":
        return cls(
            status=record.status.value,
            threats=[ThreatOut.from_finding(f) for f in record.findings],
            stats=ScanStatsOut(
                threats_found=record.stats.total,
                malicious=record.stats.malicious,
                suspicious=record.stats.suspicious,
                neutral=record.stats.neutral,
            ),
            logs=[entry.render() for entry in record.log],
            file_info=(
                FileInfoOut.from_file_info(record.file_info)
                if record.file_info is not None
                else None
            ),
        )


class ProgressUpdate(BaseModel):
    """One server-sent event on ``GET /api/scan-status/{scanId}``."""

    progress: int
    message: str

    @classmethod
    def from_entry(cls, entry: ProgressEntry) -> "ProgressUpdate":
        return cls(progress=entry.percent, message=entry.message)

    def to_sse(self) -> str:
        """Render as a single ``data:`` server-sent event frame."""
        return f"data: {self.model_dump_json()}\n\n"
