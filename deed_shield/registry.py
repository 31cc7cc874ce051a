"""
Trust registry loading and lookups.

The registry is a signed-at-source, versioned catalog. It is loaded once per
verification and only ever read; lookups are pure.
"""

from __future__ import annotations

import json
from pathlib import Path

from .models import Notary, RonProvider, TrustRegistry


def load_registry(path: str | Path) -> TrustRegistry:
    """Load a trust registry snapshot from a JSON file."""
    with Path(path).open(encoding="utf-8") as f:
        return TrustRegistry.model_validate(json.load(f))


def find_notary(registry: TrustRegistry, notary_id: str) -> Notary | None:
    for notary in registry.notaries:
        if notary.id == notary_id:
            return notary
    return None


def find_ron_provider(registry: TrustRegistry, provider_id: str) -> RonProvider | None:
    for provider in registry.ron_providers:
        if provider.id == provider_id:
            return provider
    return None
