import os
from typing import List
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

class Settings:
    # Admin API security
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "your-secret-admin-key-here")

    # CORS configuration
    CORS_ENABLED: bool = os.getenv("CORS_ENABLED", "true").lower() == "true"
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")
    CORS_ALLOW_CREDENTIALS: bool = os.getenv("CORS_ALLOW_CREDENTIALS", "true").lower() == "true"
    CORS_ALLOW_METHODS: str = os.getenv("CORS_ALLOW_METHODS", "*")
    CORS_ALLOW_HEADERS: str = os.getenv("CORS_ALLOW_HEADERS", "*")

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Monero wallet RPC (monero-wallet-rpc, JSON-RPC endpoint)
    MONERO_RPC_URL: str = os.getenv("MONERO_RPC_URL", os.getenv("MONERO_WALLET_RPC_URL", ""))
    MONERO_RPC_USER: str = os.getenv("MONERO_RPC_USER", os.getenv("MONERO_WALLET_RPC_USER", ""))
    MONERO_RPC_PASS: str = os.getenv("MONERO_RPC_PASS", os.getenv("MONERO_WALLET_RPC_PASSWORD", ""))
    MONERO_RPC_TIMEOUT_SECONDS: float = float(os.getenv("MONERO_RPC_TIMEOUT_SECONDS", "10"))
    MONERO_ACCOUNT_INDEX: int = int(os.getenv("MONERO_ACCOUNT_INDEX", "0"))
    MONERO_INCLUDE_POOL: bool = os.getenv("MONERO_INCLUDE_POOL", "true").lower() == "true"

    # Settlement rules
    REQUIRED_CONFIRMATIONS: int = int(os.getenv("REQUIRED_CONFIRMATIONS", "10"))
    INVOICE_EXPIRY_SECONDS: int = int(os.getenv("INVOICE_EXPIRY_SECONDS", "1800"))  # 30 minutes

    # Polling configuration
    MONERO_POLL_SECONDS: int = int(os.getenv("MONERO_POLL_SECONDS", "20"))
    INVOICE_BATCH_SIZE: int = int(os.getenv("INVOICE_BATCH_SIZE", "100"))

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./settlement.db")

    @property
    def watcher_enabled(self) -> bool:
        """The watcher only runs when a wallet RPC endpoint is configured"""
        return bool(self.MONERO_RPC_URL.strip())

    @property
    def cors_origins_list(self) -> List[str]:
        """Convert CORS_ORIGINS string to list"""
        if self.CORS_ORIGINS == "*":
            return ["*"]
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def cors_methods_list(self) -> List[str]:
        """Convert CORS_ALLOW_METHODS string to list"""
        if self.CORS_ALLOW_METHODS == "*":
            return ["*"]
        return [method.strip() for method in self.CORS_ALLOW_METHODS.split(",") if method.strip()]

    @property
    def cors_headers_list(self) -> List[str]:
        """Convert CORS_ALLOW_HEADERS string to list"""
        if self.CORS_ALLOW_HEADERS == "*":
            return ["*"]
        return [header.strip() for header in self.CORS_ALLOW_HEADERS.split(",") if header.strip()]

# Global settings instance
settings = Settings()
