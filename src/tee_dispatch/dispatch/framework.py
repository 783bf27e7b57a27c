"""Enclave framework resolution from app registry metadata."""

from __future__ import annotations

import json
import logging

from tee_dispatch.dispatch.errors import ValidationError
from tee_dispatch.dispatch.models import DEFAULT_TEE_FRAMEWORK, TeeFramework
from tee_dispatch.dispatch.ports import AppRegistry

logger = logging.getLogger(__name__)


def parse_tee_framework(metadata: str | None) -> TeeFramework:
    """Read the framework from serialized enclave metadata, falling back to the default."""

    if metadata is None or not metadata.strip():
        return DEFAULT_TEE_FRAMEWORK
    try:
        payload = json.loads(metadata)
    except (TypeError, ValueError, RecursionError):
        logger.info("Could not parse enclave metadata, using %s", DEFAULT_TEE_FRAMEWORK.value)
        return DEFAULT_TEE_FRAMEWORK
    if not isinstance(payload, dict):
        return DEFAULT_TEE_FRAMEWORK

    raw = payload.get("framework")
    if not isinstance(raw, str) or not raw.strip():
        return DEFAULT_TEE_FRAMEWORK
    try:
        return TeeFramework(raw.strip().lower())
    except ValueError:
        logger.warning(
            "Unsupported enclave framework %r, using %s",
            raw,
            DEFAULT_TEE_FRAMEWORK.value,
        )
        return DEFAULT_TEE_FRAMEWORK


class TeeFrameworkResolver:
    """Looks up an app and derives the enclave framework it requires."""

    def __init__(self, *, registry: AppRegistry) -> None:
        self.registry = registry

    async def resolve(self, app_address: str) -> TeeFramework:
        try:
            app = await self.registry.describe_app(app_address)
        except Exception as error:
            raise ValidationError(f"Could not describe app {app_address}: {error}") from error
        framework = parse_tee_framework(app.enclave_metadata)
        logger.info("App %s uses enclave framework %s", app_address, framework.value)
        return framework
