"""
Configuration module for Contract Leads.

Loads environment variables and provides configuration constants.
All sensitive values should be in .env file (never commit to git).

Settings are built once at startup with ``Settings.from_env()`` and passed
into the services that need them. Credentials are not validated here; each
client checks the values it needs the first time it is used.
"""

import os
from dataclasses import dataclass, field
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


@dataclass
class SupabaseConfig:
    """Supabase connection configuration."""
    url: str
    key: str  # Service role key for server-side operations

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        return cls(
            url=os.getenv("SUPABASE_URL", ""),
            key=os.getenv("SUPABASE_KEY", ""),
        )


@dataclass
class EmailConfig:
    """Email sending configuration (SMTP or SendGrid)."""
    provider: str  # "smtp" or "sendgrid"
    # SMTP settings
    smtp_host: str
    smtp_port: int
    smtp_user: str
    smtp_password: str
    # SendGrid settings
    sendgrid_api_key: str
    # Common
    from_email: str
    from_name: str

    @property
    def from_address(self) -> str:
        return f"{self.from_name} <{self.from_email}>"

    @classmethod
    def from_env(cls) -> "EmailConfig":
        return cls(
            provider=os.getenv("EMAIL_PROVIDER", "smtp"),
            smtp_host=os.getenv("SMTP_HOST", "smtp.gmail.com"),
            smtp_port=int(os.getenv("SMTP_PORT", "587")),
            smtp_user=os.getenv("SMTP_USER", ""),
            smtp_password=os.getenv("SMTP_PASSWORD", ""),
            sendgrid_api_key=os.getenv("SENDGRID_API_KEY", ""),
            from_email=os.getenv("FROM_EMAIL", "alerts@contractleads.app"),
            from_name=os.getenv("FROM_NAME", "Contract Leads"),
        )


@dataclass
class SamGovConfig:
    """SAM.gov opportunities API configuration."""
    api_key: str
    api_url: str = "https://api.sam.gov/opportunities/v2/search"
    # SAM.gov allows 10 requests per second
    rate_limit_delay: float = 0.1
    page_size: int = 100
    max_results: int = 25  # Per scheduled run
    lookback_days: int = 7

    @classmethod
    def from_env(cls) -> "SamGovConfig":
        return cls(
            api_key=os.getenv("SAM_GOV_API_KEY", ""),
            api_url=os.getenv("SAM_GOV_API_URL", "https://api.sam.gov/opportunities/v2/search"),
            rate_limit_delay=float(os.getenv("SAM_GOV_RATE_LIMIT_DELAY", "0.1")),
            page_size=int(os.getenv("SAM_GOV_PAGE_SIZE", "100")),
            max_results=int(os.getenv("SAM_GOV_MAX_RESULTS", "25")),
            lookback_days=int(os.getenv("SAM_GOV_LOOKBACK_DAYS", "7")),
        )


@dataclass
class BidBoardConfig:
    """City of Boston bid board scraping configuration."""
    listings_url: str = "https://www.boston.gov/bid-listings"
    base_url: str = "https://www.boston.gov"
    max_listings: int = 25
    request_delay: float = 2.0  # Seconds between requests (be nice to servers)

    @classmethod
    def from_env(cls) -> "BidBoardConfig":
        return cls(
            listings_url=os.getenv("BID_BOARD_URL", "https://www.boston.gov/bid-listings"),
            base_url=os.getenv("BID_BOARD_BASE_URL", "https://www.boston.gov"),
            max_listings=int(os.getenv("BID_BOARD_MAX_LISTINGS", "25")),
            request_delay=float(os.getenv("BID_BOARD_REQUEST_DELAY", "2.0")),
        )


@dataclass
class GmailConfig:
    """
    Gmail inbox access for COMMBUYS notification emails.

    Uses a service account with domain-wide delegation impersonating
    the mailbox owner.
    """
    service_account_email: str
    service_account_key: str  # PEM, base64 encoded PEM, or PEM with escaped newlines
    user_email: str
    query: str = "from:notifications@commbuys.com is:unread"
    batch_size: int = 50

    @property
    def missing(self) -> list[str]:
        """Names of required environment variables that are not set."""
        missing = []
        if not self.service_account_email:
            missing.append("GOOGLE_SERVICE_ACCOUNT_EMAIL")
        if not self.service_account_key:
            missing.append("GOOGLE_SERVICE_ACCOUNT_KEY")
        if not self.user_email:
            missing.append("GMAIL_USER_EMAIL")
        return missing

    @classmethod
    def from_env(cls) -> "GmailConfig":
        return cls(
            service_account_email=os.getenv("GOOGLE_SERVICE_ACCOUNT_EMAIL", ""),
            service_account_key=os.getenv("GOOGLE_SERVICE_ACCOUNT_KEY", ""),
            user_email=os.getenv("GMAIL_USER_EMAIL", ""),
            query=os.getenv("GMAIL_QUERY", "from:notifications@commbuys.com is:unread"),
            batch_size=int(os.getenv("GMAIL_BATCH_SIZE", "50")),
        )


@dataclass
class ScheduleConfig:
    """Cron expressions (UTC) for the scheduled workflows."""
    sam_gov_sync: str = "0 6 * * *"
    bid_board_sync: str = "0 7 * * *"  # Staggered from SAM.gov
    commbuys_email_sync: str = "*/15 * * * *"
    archive_sweep: str = "0 8 * * *"  # After the sync window
    alert_sweep: str = "0 * * * *"

    @classmethod
    def from_env(cls) -> "ScheduleConfig":
        return cls(
            sam_gov_sync=os.getenv("CRON_SAM_GOV_SYNC", "0 6 * * *"),
            bid_board_sync=os.getenv("CRON_BID_BOARD_SYNC", "0 7 * * *"),
            commbuys_email_sync=os.getenv("CRON_COMMBUYS_EMAIL_SYNC", "*/15 * * * *"),
            archive_sweep=os.getenv("CRON_ARCHIVE_SWEEP", "0 8 * * *"),
            alert_sweep=os.getenv("CRON_ALERT_SWEEP", "0 * * * *"),
        )


@dataclass
class AppConfig:
    """Main application configuration."""
    # Scraping settings
    request_timeout: int = 30

    # Alert candidate windows (first run, no lastSentAt yet)
    search_alert_lookback_days: int = 30
    profile_alert_lookback_days: int = 7
    search_alert_candidate_limit: int = 50
    profile_alert_candidate_limit: int = 100
    profile_alert_max_contracts: int = 10  # Contracts listed in one profile email

    # Links in outgoing email
    app_base_url: str = "https://app.contractleads.app"

    # Shared secret for the admin trigger server
    admin_token: str = ""

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            request_timeout=int(os.getenv("REQUEST_TIMEOUT", "30")),
            search_alert_lookback_days=int(os.getenv("SEARCH_ALERT_LOOKBACK_DAYS", "30")),
            profile_alert_lookback_days=int(os.getenv("PROFILE_ALERT_LOOKBACK_DAYS", "7")),
            search_alert_candidate_limit=int(os.getenv("SEARCH_ALERT_CANDIDATE_LIMIT", "50")),
            profile_alert_candidate_limit=int(os.getenv("PROFILE_ALERT_CANDIDATE_LIMIT", "100")),
            profile_alert_max_contracts=int(os.getenv("PROFILE_ALERT_MAX_CONTRACTS", "10")),
            app_base_url=os.getenv("APP_BASE_URL", "https://app.contractleads.app").rstrip("/"),
            admin_token=os.getenv("ADMIN_TOKEN", ""),
        )


@dataclass
class Settings:
    """All configuration, loaded once at process startup."""
    supabase: SupabaseConfig
    email: EmailConfig
    sam_gov: SamGovConfig
    bid_board: BidBoardConfig
    gmail: GmailConfig
    app: AppConfig = field(default_factory=AppConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            supabase=SupabaseConfig.from_env(),
            email=EmailConfig.from_env(),
            sam_gov=SamGovConfig.from_env(),
            bid_board=BidBoardConfig.from_env(),
            gmail=GmailConfig.from_env(),
            app=AppConfig.from_env(),
            schedule=ScheduleConfig.from_env(),
        )
