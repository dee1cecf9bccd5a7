from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from bugsync import config


class SyncStrategy(str, Enum):
    POLLING = "polling"
    WEBHOOK = "webhook"
    INCREMENTAL = "incremental"
    HYBRID = "hybrid"


class BugSyncStrategy(str, Enum):
    POLLING = "polling"
    WEBHOOK = "webhook"
    BOTH = "both"


class CheckpointPolicy(str, Enum):
    # optimistic: Checkpoint wird nach jedem Lauf vorgerückt, auch wenn einzelne Items fehlschlugen
    OPTIMISTIC = "optimistic"
    # require_complete: Checkpoint nur, wenn weder Seitenabruf noch Item fehlgeschlagen ist
    REQUIRE_COMPLETE = "require_complete"


class WebHookAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class SyncRecordStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    RUNNING = "running"


# --- Konfigurationsmodelle ---

class SyncConfig(BaseModel):
    """Einstellungen für den Polling-Synchronisierer."""
    intervalMs: int = config.POLLING_INTERVAL_MS
    batchSize: int = config.POLLING_BATCH_SIZE
    maxRetries: int = config.SYNC_MAX_RETRIES
    enabledEntities: List[str] = Field(default_factory=lambda: ["bugs"])
    checkpointPolicy: CheckpointPolicy = CheckpointPolicy(config.CHECKPOINT_POLICY)


class SyncTableConfig(BaseModel):
    tableName: str
    primaryKey: str = "id"
    timestampField: str = "updated_at"
    enabled: bool = True
    customQuery: Optional[str] = None


class IncrementalSyncConfig(BaseModel):
    """Einstellungen für den inkrementellen Synchronisierer."""
    checkIntervalMs: int = config.INCREMENTAL_INTERVAL_MS
    batchSize: int = config.INCREMENTAL_BATCH_SIZE
    maxRetries: int = config.SYNC_MAX_RETRIES
    syncTables: List[SyncTableConfig] = Field(
        default_factory=lambda: [SyncTableConfig(tableName="bugs", primaryKey="id", timestampField="updated_at")]
    )
    checkpointPolicy: CheckpointPolicy = CheckpointPolicy(config.CHECKPOINT_POLICY)


class WebHookConfig(BaseModel):
    secretKey: str = config.WEBHOOK_SECRET_KEY
    allowedEvents: List[str] = Field(default_factory=lambda: list(config.WEBHOOK_ALLOWED_EVENTS))
    maxTimestampDrift: int = config.SIGNATURE_WINDOW_MS  # erlaubte Zeitstempel-Abweichung in ms


class PollingSettings(BaseModel):
    intervalMs: int = config.POLLING_INTERVAL_MS
    enabled: bool = True


class WebHookSettings(BaseModel):
    enabled: bool = True
    secretKey: str = config.WEBHOOK_SECRET_KEY


class BugSyncConfig(BaseModel):
    strategy: BugSyncStrategy = BugSyncStrategy(config.BUG_SYNC_STRATEGY)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    webhook: WebHookSettings = Field(default_factory=WebHookSettings)
    fallbackToPolling: bool = config.BUG_SYNC_FALLBACK_TO_POLLING
    cooldownMs: int = config.WEBHOOK_COOLDOWN_MS
    healthCheckIntervalMs: int = config.HEALTH_CHECK_INTERVAL_MS
    webhookTimeoutMs: int = config.WEBHOOK_HEALTH_TIMEOUT_MS


class SyncManagerConfig(BaseModel):
    strategy: SyncStrategy = SyncStrategy(config.SYNC_STRATEGY)
    fallbackStrategy: Optional[SyncStrategy] = (
        SyncStrategy(config.SYNC_FALLBACK_STRATEGY) if config.SYNC_FALLBACK_STRATEGY else None
    )
    enableFailover: bool = config.SYNC_ENABLE_FAILOVER
    healthCheckIntervalMs: int = config.HEALTH_CHECK_INTERVAL_MS
    webhookTimeoutMs: int = config.WEBHOOK_HEALTH_TIMEOUT_MS
    unhealthyAfterFailures: int = config.SYNC_MAX_RETRIES


# --- Laufzeitmodelle ---

class SyncResult(BaseModel):
    """Ergebnis eines Pull-Zyklus."""
    success: bool = True
    syncedCount: int = 0
    failedCount: int = 0
    lastSyncTime: datetime
    errors: List[Dict[str, Any]] = Field(default_factory=list)
    durationMs: int = 0


class StrategyPerformance(BaseModel):
    avgResponseTime: float = 0.0
    successRate: float = 100.0


class SyncStatus(BaseModel):
    strategy: SyncStrategy
    isHealthy: bool = False
    lastSuccessTime: Optional[datetime] = None
    failureCount: int = 0
    performance: StrategyPerformance = Field(default_factory=StrategyPerformance)
    # Zähler für die Berechnung von successRate / avgResponseTime
    totalRuns: int = 0
    successfulRuns: int = 0


class StrategyStatusTable(BaseModel):
    """Feste Statustabelle: ein Eintrag pro Strategie, immer vollständig belegt."""
    polling: SyncStatus = Field(default_factory=lambda: SyncStatus(strategy=SyncStrategy.POLLING))
    webhook: SyncStatus = Field(default_factory=lambda: SyncStatus(strategy=SyncStrategy.WEBHOOK))
    incremental: SyncStatus = Field(default_factory=lambda: SyncStatus(strategy=SyncStrategy.INCREMENTAL))
    hybrid: SyncStatus = Field(default_factory=lambda: SyncStatus(strategy=SyncStrategy.HYBRID))

    def get(self, strategy: SyncStrategy) -> SyncStatus:
        return getattr(self, SyncStrategy(strategy).value)

    def replace(self, strategy: SyncStrategy, status: SyncStatus) -> None:
        setattr(self, SyncStrategy(strategy).value, status)

    def items(self):
        return [(strategy, self.get(strategy)) for strategy in SyncStrategy]


class WebHookEvent(BaseModel):
    model_config = ConfigDict(coerce_numbers_to_str=True)

    eventType: str
    entityType: str
    entityId: str
    action: WebHookAction
    data: Any = None
    timestamp: Optional[Union[str, int]] = None


class WebHookRequest(BaseModel):
    """Framework-unabhängige Darstellung eines eingehenden WebHook-Requests."""
    method: str
    path: str
    headers: Dict[str, str] = Field(default_factory=dict)
    body: Any = None

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return None


class WebHookResponse(BaseModel):
    statusCode: int
    body: Dict[str, Any]
    # Fehler, der während der Verarbeitung aufgetreten ist (nur bei 500 gesetzt)
    error: Optional[str] = None

    @property
    def accepted(self) -> bool:
        return self.statusCode == 200

    @property
    def failed(self) -> bool:
        return self.statusCode >= 500


class SyncRecord(BaseModel):
    id: str
    tableName: str
    lastSyncTime: datetime
    recordCount: int = 0
    failedCount: int = 0
    status: SyncRecordStatus = SyncRecordStatus.RUNNING
    error: Optional[str] = None


class SignatureContext(BaseModel):
    method: str
    path: str
    timestamp: Optional[Union[str, int]] = None
    body: Any = None
    secret: str


class ExternalError(BaseModel):
    message: str
    status: Optional[int] = None
    code: str = "UNKNOWN"
    url: Optional[str] = None
    method: Optional[str] = None
    data: Any = None


class BugResolutionStatus(str, Enum):
    RESOLVED = "resolved"
    NOT_A_BUG = "not_a_bug"
    DUPLICATE = "duplicate"


class BugResolution(BaseModel):
    status: BugResolutionStatus
    comment: Optional[str] = None
    resolvedBy: str
    resolvedAt: Optional[str] = None
