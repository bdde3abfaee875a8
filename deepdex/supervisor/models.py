import re
import time
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from deepdex.contracts import PROCESS_STORE_VERSION, SUPPORTED_PROCESS_STORE_VERSIONS
from deepdex.strategies import STRATEGIES

from .errors import ValidationError

PROCESS_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
MAX_PROCESS_NAME_LENGTH = 32


def validate_process_name(name: str) -> str:
    """Reject names outside [A-Za-z0-9_-] or longer than 32 characters."""
    if not isinstance(name, str) or not name:
        raise ValidationError("Process name is required.")
    if not PROCESS_NAME_PATTERN.match(name):
        raise ValidationError(
            "Process name must contain only letters, numbers, dashes, and underscores"
        )
    if len(name) > MAX_PROCESS_NAME_LENGTH:
        raise ValidationError(
            f"Process name must be {MAX_PROCESS_NAME_LENGTH} characters or less"
        )
    return name


def validate_strategy(strategy: str) -> str:
    if not strategy:
        raise ValidationError("Strategy is required.")
    if strategy not in STRATEGIES:
        raise ValidationError(
            f"Unknown strategy: {strategy}. Available: {', '.join(STRATEGIES)}"
        )
    return strategy


def now_ms() -> int:
    return int(time.time() * 1000)


class ProcessRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    pid: int
    strategy: str
    account: str
    wallet: Optional[str] = None
    config: dict[str, Any] = Field(default_factory=dict)
    started_at: int = Field(alias="startedAt")
    log_file: str = Field(alias="logFile")
    config_path: Optional[str] = Field(default=None, alias="configPath")

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ProcessStore(BaseModel):
    version: int = PROCESS_STORE_VERSION
    processes: List[ProcessRecord] = Field(default_factory=list)

    @field_validator("version")
    @classmethod
    def _supported_version(cls, value: int) -> int:
        if value not in SUPPORTED_PROCESS_STORE_VERSIONS:
            raise ValueError(f"unsupported process store version: {value}")
        return value

    @field_validator("processes")
    @classmethod
    def _unique_names(cls, value: List[ProcessRecord]) -> List[ProcessRecord]:
        seen: set[str] = set()
        for record in value:
            if record.name in seen:
                raise ValueError(f"duplicate process name: {record.name}")
            seen.add(record.name)
        return value

    def find(self, name: str) -> Optional[ProcessRecord]:
        for record in self.processes:
            if record.name == name:
                return record
        return None

    def without(self, name: str) -> "ProcessStore":
        return ProcessStore(
            version=self.version,
            processes=[p for p in self.processes if p.name != name],
        )

    def with_record(self, record: ProcessRecord) -> "ProcessStore":
        return ProcessStore(version=self.version, processes=[*self.processes, record])

    def to_json(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "processes": [p.to_json() for p in self.processes],
        }


class ProcessStatus(BaseModel):
    """Record plus liveness computed at call time; never persisted."""

    record: ProcessRecord
    running: bool
    uptime: int

    @classmethod
    def from_record(cls, record: ProcessRecord, running: bool, at_ms: int | None = None) -> "ProcessStatus":
        at = now_ms() if at_ms is None else at_ms
        return cls(record=record, running=running, uptime=max(0, at - record.started_at))

    def to_json(self) -> dict[str, Any]:
        payload = self.record.to_json()
        payload["running"] = self.running
        payload["uptime"] = self.uptime
        return payload
