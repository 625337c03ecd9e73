from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_AI_MODELS = "gpt-4o-mini,o3-mini,gpt-4o,o1"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    # Runtime
    environment: str = Field(default="development", validation_alias="NODE_ENV")
    port: int = Field(default=8080, validation_alias="PORT")

    # CORS / Frontend
    frontend_base_url: str = Field(
        default="http://localhost:3000", validation_alias="FRONTEND_BASE_URL"
    )
    frontend_urls: str | None = Field(default=None, validation_alias="FRONTEND_URLS")

    # AWS / data
    aws_region: str = Field(default="us-east-1", validation_alias="AWS_REGION")
    ddb_table_name: str | None = Field(default=None, validation_alias="DDB_TABLE_NAME")
    assets_bucket_name: str | None = Field(
        default=None, validation_alias="ASSETS_BUCKET_NAME"
    )
    # Presigned GET lifetime for uploaded assets (7 days is the S3 SigV4 maximum).
    asset_url_ttl_seconds: int = Field(
        default=7 * 24 * 3600, validation_alias="ASSET_URL_TTL_SECONDS"
    )

    # Sessions
    session_secret: str | None = Field(default=None, validation_alias="SESSION_SECRET")
    session_ttl_hours: int = Field(default=24 * 7, validation_alias="SESSION_TTL_HOURS")
    session_cookie_name: str = Field(default="session", validation_alias="SESSION_COOKIE_NAME")
    # AES-GCM key material for cursor tokens and stored third-party cookies.
    token_enc_key: str | None = Field(default=None, validation_alias="TOKEN_ENC_KEY")

    # Passkeys (WebAuthn relying party)
    webauthn_rp_id: str = Field(default="localhost", validation_alias="WEBAUTHN_RP_ID")
    webauthn_rp_name: str = Field(default="ProposalHub", validation_alias="WEBAUTHN_RP_NAME")
    webauthn_origin: str = Field(
        default="http://localhost:3000", validation_alias="WEBAUTHN_ORIGIN"
    )

    # OpenAI
    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    # Ordered fallback list, tried left to right.
    openai_models: str = Field(default=DEFAULT_AI_MODELS, validation_alias="OPENAI_MODELS")
    openai_model_generate_content: str | None = Field(
        default=None, validation_alias="OPENAI_MODEL_GENERATE_CONTENT"
    )
    openai_model_profile_cleanup: str | None = Field(
        default=None, validation_alias="OPENAI_MODEL_PROFILE_CLEANUP"
    )
    openai_model_document_analysis: str | None = Field(
        default=None, validation_alias="OPENAI_MODEL_DOCUMENT_ANALYSIS"
    )
    ai_min_content_chars: int = Field(default=50, validation_alias="AI_MIN_CONTENT_CHARS")
    ai_timeout_seconds: int = Field(default=60, validation_alias="AI_TIMEOUT_SECONDS")
    openai_max_output_tokens_cap: int = Field(
        default=4000, validation_alias="OPENAI_MAX_OUTPUT_TOKENS_CAP"
    )

    # Perplexity (person search)
    perplexity_api_key: str | None = Field(default=None, validation_alias="PERPLEXITY_API_KEY")
    perplexity_model: str = Field(default="sonar-pro", validation_alias="PERPLEXITY_MODEL")

    # LinkedIn
    linkedin_access_token: str | None = Field(
        default=None, validation_alias="LINKEDIN_ACCESS_TOKEN"
    )
    linkedin_session_ttl_minutes: int = Field(
        default=60, validation_alias="LINKEDIN_SESSION_TTL_MINUTES"
    )

    # Google Custom Search (logo fallback)
    google_cse_api_key: str | None = Field(default=None, validation_alias="GOOGLE_CSE_API_KEY")
    google_cse_id: str | None = Field(default=None, validation_alias="GOOGLE_CSE_ID")

    logo_fetch_timeout_seconds: float = Field(
        default=8.0, validation_alias="LOGO_FETCH_TIMEOUT_SECONDS"
    )

    # Observability (OpenTelemetry)
    otel_enabled: bool = Field(default=False, validation_alias="OTEL_ENABLED")
    otel_service_name: str | None = Field(
        default="proposalhub-backend", validation_alias="OTEL_SERVICE_NAME"
    )
    # OTLP/HTTP endpoint (e.g. http://adot-collector:4318/v1/traces)
    otel_exporter_otlp_endpoint: str | None = Field(
        default=None, validation_alias="OTEL_EXPORTER_OTLP_ENDPOINT"
    )

    # ---- helpers / derived flags ----
    @property
    def normalized_environment(self) -> str:
        v = (self.environment or "").strip().lower()
        if v in ("prod", "production"):
            return "production"
        if v in ("stage", "staging"):
            return "staging"
        if v in ("dev", "development"):
            return "development"
        return v or "development"

    @property
    def is_production(self) -> bool:
        return self.normalized_environment == "production"

    @property
    def is_development(self) -> bool:
        return self.normalized_environment == "development"

    def require_in_production(self) -> None:
        """
        Enforce required settings in production.

        Development/staging may run with partial config for local work.
        """
        if not self.is_production:
            return

        missing: list[str] = []

        if not self.ddb_table_name:
            missing.append("DDB_TABLE_NAME")
        if not self.assets_bucket_name:
            missing.append("ASSETS_BUCKET_NAME")
        if not self.session_secret:
            missing.append("SESSION_SECRET")
        if not self.token_enc_key:
            missing.append("TOKEN_ENC_KEY")
        if not self.webauthn_rp_id or self.webauthn_rp_id == "localhost":
            missing.append("WEBAUTHN_RP_ID")
        if not self.webauthn_origin or self.webauthn_origin.startswith("http://localhost"):
            missing.append("WEBAUTHN_ORIGIN")

        if missing:
            raise RuntimeError(
                "Missing required production environment variables: "
                + ", ".join(missing)
            )

    def to_log_safe_dict(self) -> dict[str, object]:
        """
        A redacted representation safe for structured logs / diagnostics.
        """
        def _has(v: object) -> bool:
            return v is not None and str(v).strip() != ""

        return {
            "environment": self.normalized_environment,
            "port": self.port,
            "frontend": {
                "frontend_base_url": self.frontend_base_url,
                "frontend_urls": self.frontend_urls,
            },
            "aws": {
                "aws_region": self.aws_region,
                "ddb_table_name": self.ddb_table_name,
                "assets_bucket_name": self.assets_bucket_name,
            },
            "auth": {
                "session_secret_configured": _has(self.session_secret),
                "token_enc_key_configured": _has(self.token_enc_key),
                "session_ttl_hours": self.session_ttl_hours,
                "webauthn_rp_id": self.webauthn_rp_id,
                "webauthn_origin": self.webauthn_origin,
            },
            "integrations": {
                "openai_api_key_configured": _has(self.openai_api_key),
                "openai_models": self.ai_models_for("generate_content"),
                "perplexity_api_key_configured": _has(self.perplexity_api_key),
                "perplexity_model": self.perplexity_model,
                "linkedin_access_token_configured": _has(self.linkedin_access_token),
                "google_cse_configured": _has(self.google_cse_api_key) and _has(self.google_cse_id),
            },
        }

    def ai_models_for(self, purpose: str) -> list[str]:
        # Per-purpose override goes first, then the shared fallback list.
        purpose = (purpose or "").strip().lower()
        override_map = {
            "generate_content": self.openai_model_generate_content,
            "improve_section": self.openai_model_generate_content,
            "profile_cleanup": self.openai_model_profile_cleanup,
            "document_analysis": self.openai_model_document_analysis,
        }
        out: list[str] = []
        ov = override_map.get(purpose)
        if ov and str(ov).strip():
            out.append(str(ov).strip())
        for m in str(self.openai_models or DEFAULT_AI_MODELS).split(","):
            m = m.strip()
            if m and m not in out:
                out.append(m)
        return out or [m for m in DEFAULT_AI_MODELS.split(",")]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    s = Settings()
    s.require_in_production()
    return s


settings = get_settings()
