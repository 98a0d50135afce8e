import os
from decimal import Decimal
from typing import List

class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def _env_float(self, name: str, default: float) -> float:
        raw = (os.getenv(name) or "").strip()
        if not raw:
            return default
        try:
            return float(raw)
        except ValueError:
            return default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', '').strip()
        # Comma-separated list of allowed CORS origins for browser/mobile clients.
        # Default keeps local dev working out of the box.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"

        # Storage backend for the key/value document store: memory | file | postgres.
        default_store = "postgres" if (self.db_url and self.env not in {"local", "dev"}) else "file"
        self.store_backend = (os.getenv("BITAGORA_STORE", "").strip().lower() or default_store)
        self.data_dir = os.getenv("BITAGORA_DATA_DIR", "").strip() or os.path.join(os.getcwd(), ".bitagora-data")
        self.default_merchant_id = os.getenv("BITAGORA_DEFAULT_MERCHANT_ID", "").strip() or "dev-merchant-001"
        self.secret_key = os.getenv("BITAGORA_SECRET_KEY", "").strip()

        self.bitcoin_network = (os.getenv("BITCOIN_NETWORK", "").strip().lower() or "mainnet")
        default_mempool = "https://mempool.space/testnet/api" if self.bitcoin_network == "testnet" else "https://mempool.space/api"
        self.mempool_api_url = (os.getenv("MEMPOOL_API_URL", "").strip() or default_mempool).rstrip("/")
        self.btc_price_api_url = os.getenv("BTC_PRICE_API_URL", "").strip() or "https://mempool.space/api/v1/prices"
        self.http_timeout_seconds = self._env_float("HTTP_TIMEOUT_SECONDS", 10.0)
        self.lightning_environment = (os.getenv("LIGHTNING_ENVIRONMENT", "").strip().lower() or "sandbox")

        # Payments above this USD amount wait for 6 on-chain confirmations instead of 1.
        self.large_payment_usd = Decimal(os.getenv("LARGE_PAYMENT_USD", "").strip() or "1000")

    @property
    def debug_enabled(self) -> bool:
        return self.env in {"local", "dev"}

settings = Settings()
