"""
Vehicle registry -- the encrypted license plate.

Plates are written as ciphertext/iv/tag/salt (fresh salt and IV on every
write) and only decrypted at the moment of display.  Rows created before
encryption carry ``license_plate_legacy=True`` and hold the plaintext; they
are the only rows allowed to bypass decryption, each time with a WARNING, and
``migrate_legacy_plates`` re-encrypts them.  Any other row that fails to
decrypt raises :class:`DecryptionError`.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from rideshare.domain.entities import EncryptedValue
from rideshare.domain.exceptions import VehicleNotFoundError
from rideshare.infrastructure.models import VehicleModel
from rideshare.infrastructure.repositories import VehicleRepository
from rideshare.schemas import VehicleRead
from rideshare.security.encryption import EncryptionService

logger = logging.getLogger(__name__)


def _store_plate(vehicle: VehicleModel, value: EncryptedValue) -> None:
    vehicle.license_plate_ciphertext = value.ciphertext
    vehicle.license_plate_iv = value.iv
    vehicle.license_plate_auth_tag = value.auth_tag
    vehicle.license_plate_salt = value.salt
    vehicle.license_plate_version = value.version
    vehicle.license_plate_legacy = False


def _stored_plate(vehicle: VehicleModel) -> EncryptedValue:
    return EncryptedValue(
        ciphertext=vehicle.license_plate_ciphertext,
        iv=vehicle.license_plate_iv or "",
        auth_tag=vehicle.license_plate_auth_tag or "",
        salt=vehicle.license_plate_salt or "",
        version=vehicle.license_plate_version,
    )


class VehicleService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        encryption: EncryptionService,
    ):
        self._sessions = session_factory
        self.encryption = encryption

    async def register_vehicle(
        self,
        *,
        owner_id: str,
        license_plate: str,
        make: str,
        model: str,
        year: Optional[int] = None,
        color: Optional[str] = None,
        vehicle_type: str = "standard",
        seats: int = 4,
    ) -> VehicleRead:
        vehicle = VehicleModel(
            owner_id=owner_id,
            make=make,
            model=model,
            year=year,
            color=color,
            vehicle_type=vehicle_type,
            seats=seats,
        )
        _store_plate(vehicle, self.encryption.encrypt(license_plate.strip()))
        async with self._sessions.begin() as session:
            await VehicleRepository(session).create(vehicle)
        logger.info("Vehicle %s registered for owner %s", vehicle.id, owner_id)
        return self._read(vehicle, self.encryption.mask(license_plate.strip()))

    async def update_license_plate(self, vehicle_id: str, license_plate: str) -> None:
        value = self.encryption.encrypt(license_plate.strip())
        async with self._sessions.begin() as session:
            vehicle = await self._get(session, vehicle_id)
            _store_plate(vehicle, value)

    async def reveal_license_plate(self, vehicle_id: str) -> str:
        async with self._sessions() as session:
            vehicle = await self._get(session, vehicle_id)
        return self._plaintext(vehicle)

    async def masked_license_plate(self, vehicle_id: str) -> Optional[str]:
        return self.encryption.mask(await self.reveal_license_plate(vehicle_id))

    async def get_vehicle(self, vehicle_id: str) -> VehicleRead:
        async with self._sessions() as session:
            vehicle = await self._get(session, vehicle_id)
        return self._read(vehicle, self.encryption.mask(self._plaintext(vehicle)))

    async def migrate_legacy_plates(self, batch_size: int = 500) -> int:
        """Encrypt every plate still stored in plaintext."""
        migrated = 0
        async with self._sessions.begin() as session:
            for vehicle in await VehicleRepository(session).list_legacy(batch_size):
                _store_plate(
                    vehicle, self.encryption.encrypt(vehicle.license_plate_ciphertext)
                )
                migrated += 1
        if migrated:
            logger.info("Encrypted %d legacy license plate(s)", migrated)
        return migrated

    # ── Internals ─────────────────────────────────────────────────────

    @staticmethod
    async def _get(session: AsyncSession, vehicle_id: str) -> VehicleModel:
        vehicle = await VehicleRepository(session).get_by_id(vehicle_id)
        if vehicle is None:
            raise VehicleNotFoundError(vehicle_id)
        return vehicle

    def _plaintext(self, vehicle: VehicleModel) -> str:
        if vehicle.license_plate_legacy:
            logger.warning(
                "Vehicle %s license plate is stored unencrypted (legacy row)",
                vehicle.id,
            )
            return vehicle.license_plate_ciphertext
        return self.encryption.decrypt(_stored_plate(vehicle))

    @staticmethod
    def _read(vehicle: VehicleModel, masked_plate: Optional[str]) -> VehicleRead:
        return VehicleRead(
            id=vehicle.id,
            owner_id=vehicle.owner_id,
            make=vehicle.make,
            model=vehicle.model,
            year=vehicle.year,
            color=vehicle.color,
            vehicle_type=vehicle.vehicle_type,
            seats=vehicle.seats,
            license_plate=masked_plate,
        )
