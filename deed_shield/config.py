"""Environment-driven engine settings."""

from __future__ import annotations

import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict

from .attestation import DEFAULT_SECRET
from .pipeline import DEFAULT_CALL_TIMEOUT_SECONDS
from .receipt import DEFAULT_VERIFIER_ID
from .verifiers import OWNER_MATCH_THRESHOLD

DEFAULT_VERIFICATION_DEADLINE_SECONDS = 15.0
DEFAULT_ATTOM_BASE_URL = "https://api.gateway.attomdata.com"


class Settings(BaseModel):
    """Immutable snapshot of the engine configuration."""

    model_config = ConfigDict(frozen=True)

    verifier_id: str = DEFAULT_VERIFIER_ID
    registry_path: Optional[str] = None
    proof_secret: str = DEFAULT_SECRET
    call_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS
    verification_deadline: float = DEFAULT_VERIFICATION_DEADLINE_SECONDS
    owner_match_threshold: int = OWNER_MATCH_THRESHOLD

    notary_api_key: Optional[str] = None
    property_api_key: Optional[str] = None
    attom_api_key: Optional[str] = None
    attom_base_url: str = DEFAULT_ATTOM_BASE_URL
    openai_api_key: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            value = env.get(name)
            return value if value else None

        values = {
            "verifier_id": get("DEED_SHIELD_VERIFIER_ID"),
            "registry_path": get("DEED_SHIELD_REGISTRY_PATH"),
            "proof_secret": get("DEED_SHIELD_PROOF_SECRET"),
            "call_timeout": get("DEED_SHIELD_CALL_TIMEOUT"),
            "verification_deadline": get("DEED_SHIELD_VERIFICATION_DEADLINE"),
            "owner_match_threshold": get("DEED_SHIELD_OWNER_MATCH_THRESHOLD"),
            "notary_api_key": get("NOTARY_API_KEY"),
            "property_api_key": get("PROPERTY_API_KEY"),
            "attom_api_key": get("ATTOM_API_KEY"),
            "attom_base_url": get("ATTOM_BASE_URL"),
            "openai_api_key": get("OPENAI_API_KEY"),
        }
        # pydantic coerces the numeric strings; unset keys keep their defaults
        return cls.model_validate({k: v for k, v in values.items() if v is not None})
