"""
Engine configuration.

Settings is the only object that reads the process environment. Batch jobs
turn it into an AnalyticsConfig once per invocation and pass that explicit,
immutable struct into every estimator and detector, so historical runs can
be reproduced from the parameters recorded on their AnalysisRun.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Any, Dict, Literal, Optional, Self

from edumeter_analytics.domain_types import IrtModelKind


# --- IRT defaults ---
DEFAULT_IRT_MIN_RESPONSES = 30
DEFAULT_IRT_MAX_ITERS = 250
DEFAULT_IRT_LEARNING_RATE = 0.05
DEFAULT_IRT_TOLERANCE = 0.0005
DEFAULT_IRT_L2 = 0.01
DEFAULT_IRT_MIN_A = 0.2
DEFAULT_IRT_MAX_A = 3.0
DEFAULT_IRT_MIN_B = -4.0
DEFAULT_IRT_MAX_B = 4.0

# --- Detection defaults ---
DEFAULT_IPD_THRESHOLD = 0.2
DEFAULT_IPD_A_THRESHOLD = 0.3
DEFAULT_IPD_B_THRESHOLD = 0.3
DEFAULT_DIF_THRESHOLD = 0.2
DEFAULT_DIF_MIN_RESPONSES = 30
DEFAULT_EXPOSURE_THRESHOLD = 200
DEFAULT_TIME_THRESHOLD_MS = 120000

DEFAULT_WINDOW_DAYS = 30
DEFAULT_COMMIT_BATCH_SIZE = 500


class _RunParams(BaseModel):
    """Frozen config struct serialised with camelCase keys onto AnalysisRun.params."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    def to_params(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class IrtOptions(_RunParams):
    """Hyperparameters for the gradient 2PL fit."""

    model: IrtModelKind = IrtModelKind.TWO_PL
    min_responses: int = Field(default=DEFAULT_IRT_MIN_RESPONSES, ge=1)
    max_iters: int = Field(default=DEFAULT_IRT_MAX_ITERS, ge=1)
    learning_rate: float = Field(default=DEFAULT_IRT_LEARNING_RATE, gt=0.0)
    tolerance: float = Field(default=DEFAULT_IRT_TOLERANCE, ge=0.0)
    l2: float = Field(default=DEFAULT_IRT_L2, ge=0.0)
    min_a: float = DEFAULT_IRT_MIN_A
    max_a: float = DEFAULT_IRT_MAX_A
    min_b: float = DEFAULT_IRT_MIN_B
    max_b: float = DEFAULT_IRT_MAX_B

    @model_validator(mode="after")
    def validate_bounds(self) -> Self:
        """Parameter bounds must be ordered, and the prior (1, 0) must lie inside them."""
        if self.min_a >= self.max_a:
            raise ValueError(f"min_a ({self.min_a}) must be < max_a ({self.max_a})")
        if self.min_b >= self.max_b:
            raise ValueError(f"min_b ({self.min_b}) must be < max_b ({self.max_b})")
        if not (self.min_a <= 1.0 <= self.max_a and self.min_b <= 0.0 <= self.max_b):
            raise ValueError("Bounds must contain the starting point a=1, b=0")
        return self


class DetectionThresholds(_RunParams):
    """Thresholds for every detection rule. All comparisons are inclusive."""

    ipd_threshold: float = Field(default=DEFAULT_IPD_THRESHOLD, ge=0.0)
    ipd_a_threshold: float = Field(default=DEFAULT_IPD_A_THRESHOLD, ge=0.0)
    ipd_b_threshold: float = Field(default=DEFAULT_IPD_B_THRESHOLD, ge=0.0)
    dif_threshold: float = Field(default=DEFAULT_DIF_THRESHOLD, ge=0.0)
    dif_min_responses: int = Field(default=DEFAULT_DIF_MIN_RESPONSES, ge=1)
    exposure_threshold: int = Field(default=DEFAULT_EXPOSURE_THRESHOLD, ge=0)
    time_threshold_ms: float = Field(default=DEFAULT_TIME_THRESHOLD_MS, ge=0.0)


class AnalyticsConfig(_RunParams):
    """Everything one batch job needs besides the store and the tenant."""

    window_days: int = Field(default=DEFAULT_WINDOW_DAYS, ge=1)
    irt: IrtOptions = IrtOptions()
    detection: DetectionThresholds = DetectionThresholds()
    # Rows flushed per commit while persisting item results
    commit_batch_size: int = Field(default=DEFAULT_COMMIT_BATCH_SIZE, ge=1)
    # Recorded on every AnalysisRun; None when the build is unknown
    software_version: Optional[str] = None


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    # Application
    APP_NAME: str = "edumeter-analytics"
    APP_VERSION: str = "0.1.0"
    ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Store
    # Empty values are reported as a configuration error by the worker
    # before any run is created.
    DATABASE_URL: str = ""
    TENANT_ID: str = ""

    # Database connection pool settings
    DB_POOL_SIZE: int = 5
    DB_POOL_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT: int = 30  # Seconds to wait for available connection
    DB_POOL_RECYCLE: int = 3600  # Recycle connections after 1 hour
    DB_POOL_PRE_PING: bool = True

    # Sentry Error Tracking
    SENTRY_DSN: str = Field(
        default="",
        description="Sentry DSN for error tracking (leave empty to disable)",
    )

    # Analysis window
    ANALYTICS_WINDOW_DAYS: int = Field(default=DEFAULT_WINDOW_DAYS, ge=1)

    # Detection thresholds
    IPD_THRESHOLD: float = Field(default=DEFAULT_IPD_THRESHOLD, ge=0.0)
    IPD_A_THRESHOLD: float = Field(default=DEFAULT_IPD_A_THRESHOLD, ge=0.0)
    IPD_B_THRESHOLD: float = Field(default=DEFAULT_IPD_B_THRESHOLD, ge=0.0)
    DIF_THRESHOLD: float = Field(default=DEFAULT_DIF_THRESHOLD, ge=0.0)
    DIF_MIN_RESPONSES: int = Field(default=DEFAULT_DIF_MIN_RESPONSES, ge=1)
    EXPOSURE_THRESHOLD: int = Field(default=DEFAULT_EXPOSURE_THRESHOLD, ge=0)
    TIME_THRESHOLD_MS: float = Field(default=DEFAULT_TIME_THRESHOLD_MS, ge=0.0)

    # IRT hyperparameters
    IRT_MODEL: IrtModelKind = IrtModelKind.TWO_PL
    IRT_MIN_RESPONSES: int = Field(default=DEFAULT_IRT_MIN_RESPONSES, ge=1)
    IRT_MAX_ITERS: int = Field(default=DEFAULT_IRT_MAX_ITERS, ge=1)
    IRT_LR: float = Field(default=DEFAULT_IRT_LEARNING_RATE, gt=0.0)
    IRT_TOL: float = Field(default=DEFAULT_IRT_TOLERANCE, ge=0.0)
    IRT_L2: float = Field(default=DEFAULT_IRT_L2, ge=0.0)
    IRT_MIN_A: float = DEFAULT_IRT_MIN_A
    IRT_MAX_A: float = DEFAULT_IRT_MAX_A
    IRT_MIN_B: float = DEFAULT_IRT_MIN_B
    IRT_MAX_B: float = DEFAULT_IRT_MAX_B

    # Run serialisation (per tenant, per run type)
    ANALYTICS_LOCK_ENABLED: bool = True
    ANALYTICS_LOCK_MINUTES: int = Field(default=60, ge=1)

    # Rows flushed per commit while persisting item results
    ANALYTICS_COMMIT_BATCH_SIZE: int = Field(default=DEFAULT_COMMIT_BATCH_SIZE, ge=1)

    # Build identifier stamped on each run; APP_VERSION when empty
    SOFTWARE_VERSION: str = ""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    def analytics_config(self) -> AnalyticsConfig:
        """Build the explicit config struct handed to the algorithmic core."""
        return AnalyticsConfig(
            window_days=self.ANALYTICS_WINDOW_DAYS,
            irt=IrtOptions(
                model=self.IRT_MODEL,
                min_responses=self.IRT_MIN_RESPONSES,
                max_iters=self.IRT_MAX_ITERS,
                learning_rate=self.IRT_LR,
                tolerance=self.IRT_TOL,
                l2=self.IRT_L2,
                min_a=self.IRT_MIN_A,
                max_a=self.IRT_MAX_A,
                min_b=self.IRT_MIN_B,
                max_b=self.IRT_MAX_B,
            ),
            detection=DetectionThresholds(
                ipd_threshold=self.IPD_THRESHOLD,
                ipd_a_threshold=self.IPD_A_THRESHOLD,
                ipd_b_threshold=self.IPD_B_THRESHOLD,
                dif_threshold=self.DIF_THRESHOLD,
                dif_min_responses=self.DIF_MIN_RESPONSES,
                exposure_threshold=self.EXPOSURE_THRESHOLD,
                time_threshold_ms=self.TIME_THRESHOLD_MS,
            ),
            commit_batch_size=self.ANALYTICS_COMMIT_BATCH_SIZE,
            software_version=self.SOFTWARE_VERSION or self.APP_VERSION or None,
        )


settings = Settings()
