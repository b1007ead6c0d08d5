"""Application configuration and environment settings"""
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

class PFIWeights(BaseModel):
    """Weights used when combining PFI components"""
    attestation: float = Field(0.5, description="Share of the final PFI taken by attestations")
    service: float = Field(0.3, description="Share taken by community service hours")
    baseline: float = Field(0.2, description="Share granted to every participant")
    dispute_resolution: float = Field(1.5, description="Multiplier for dispute_resolution attestations")
    community_service: float = Field(1.0, description="Multiplier for community_service attestations")
    peer_rating: float = Field(0.75, description="Multiplier for peer_rating attestations")
    service_hours_cap: int = Field(100, description="Hours at which the service score saturates")

    def type_multiplier(self, attestation_type: str) -> float:
        return getattr(self, attestation_type)

class Settings(BaseSettings):
    """Application settings loaded from environment variables"""
    # Database settings
    DB_TYPE: str = Field("sqlite", description="Database backend: sqlite or postgres")
    DB_PATH: str = Field("./faircoin.db", description="SQLite database file")
    DB_HOST: str = Field("localhost", description="PostgreSQL host")
    DB_PORT: str = Field("5432", description="PostgreSQL port")
    DB_USER: str = Field("faircoin", description="PostgreSQL user")
    DB_PASSWORD: Optional[str] = Field(None, description="PostgreSQL password")
    DB_NAME: str = Field("faircoin_db", description="PostgreSQL database name")
    DB_SSLMODE: str = Field("disable", description="PostgreSQL SSL mode")
    DATABASE_URL: Optional[str] = Field(None, description="Full connection string, overrides the DB_* settings")

    # Ledger settings
    FEE_RATE: Decimal = Field(Decimal("0.001"), description="Fraction of every transfer that is burned")
    STARTING_BALANCE: Decimal = Field(Decimal("0"), description="Amount credited to new wallets")
    MAX_PAGE_SIZE: int = Field(100, description="Upper bound for transaction history pages")

    # Monetary policy
    BASE_MONTHLY_ISSUANCE: Decimal = Field(Decimal("1000"), description="Issuance at activity and fairness factor 1")
    EXPECTED_MONTHLY_TRANSACTIONS: int = Field(100, description="Transfers per month that yield activity factor 1")
    MAX_ACTIVITY_FACTOR: float = Field(1.5, description="Upper bound for the activity factor")
    MAX_MONTHLY_GROWTH_RATE: Decimal = Field(Decimal("0.02"), description="Issuance cap as a fraction of supply")

    # Fairness system
    PFI_WEIGHTS: PFIWeights = Field(default_factory=PFIWeights)
    MERCHANT_BASE_TFI: int = Field(30, description="TFI of a merchant without ratings")
    MIN_PFI_FOR_ATTESTATION: int = Field(30, description="Minimum PFI to attest another account")
    AUTO_VERIFY_PFI: int = Field(80, description="Attestations from this PFI upwards are verified immediately")
    RATING_COOLDOWN_DAYS: int = Field(7, description="Days before a customer may rate the same merchant again")

    # Fairness alerts
    ALERT_PFI_DECLINE_PERCENT: float = Field(20.0, description="Day over day drop in excellent PFI accounts that raises an alert")
    ALERT_TFI_DECLINE_PERCENT: float = Field(10.0, description="Day over day drop in average merchant TFI that raises an alert")

    # Governance
    MIN_PFI_FOR_PROPOSALS: int = Field(50, description="Minimum PFI to create a proposal")
    VOTING_PERIOD_DAYS: int = Field(7, description="Length of the voting window")
    MIN_PARTICIPATION: float = Field(0.0, description="Total voting power required for a proposal to pass")
    COUNCIL_MIN_PFI: int = Field(70, description="Minimum PFI for council membership")
    COUNCIL_SIZE: int = Field(7, description="Number of council seats")

    # Scheduler
    SCHEDULER_INTERVAL_SECONDS: int = Field(3600, description="Seconds between scheduler cycles")
    LOG_LEVEL: str = Field("INFO", description="Root log level")

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        env_nested_delimiter='__',
        case_sensitive=True
    )

settings = Settings()
