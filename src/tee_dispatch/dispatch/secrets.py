"""Requester secret provisioning for the secret-input path."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from tee_dispatch.dispatch.errors import ProvisioningError
from tee_dispatch.dispatch.models import TeeFramework
from tee_dispatch.dispatch.ports import SecretStore

logger = logging.getLogger(__name__)

REQUESTER_SECRET_SLOT = 1


@dataclass(frozen=True, slots=True)
class ProvisionedSecret:
    """Where the secret now lives and whether it was created or overwritten."""

    slot: int
    framework: TeeFramework
    created: bool


class SecretProvisioner:
    """Upserts the requester secret at a fixed slot before any order is built."""

    def __init__(self, *, store: SecretStore) -> None:
        self.store = store

    async def provision(
        self,
        *,
        owner: str,
        value: str,
        framework: TeeFramework,
        slot: int = REQUESTER_SECRET_SLOT,
    ) -> ProvisionedSecret:
        try:
            exists = await self.store.exists(owner, slot, framework)
            await self.store.upsert(slot, value, framework)
        except Exception as error:
            raise ProvisioningError(
                f"Failed to provision requester secret at slot {slot}: {error}",
            ) from error

        if exists:
            logger.info("Requester secret updated at slot %d (%s)", slot, framework.value)
        else:
            logger.info("Requester secret provisioned at slot %d (%s)", slot, framework.value)
        return ProvisionedSecret(slot=slot, framework=framework, created=not exists)
