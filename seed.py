"""
Seed script -- sample trips and bookings for local development.

Run after migrations (payment rails are simulated, so no credentials needed):
    ENCRYPTION_KEY=dev-only-key python seed.py

Creates:
  - 4 vehicles with encrypted plates
  - 6 trips between Algerian cities
  - a handful of bookings (cash and simulated CIB / Edahabia)
"""

import asyncio
from decimal import Decimal

from sqlalchemy import text

from rideshare.config import CashSettings, DomesticCardSettings, PaymentSettings, settings
from rideshare.infrastructure.database import async_session_factory, engine
from rideshare.payments.base import CardDetails, PaymentInstrument
from rideshare.payments.router import PaymentRouter
from rideshare.security.encryption import EncryptionService
from rideshare.services.booking import BookingOrchestrator
from rideshare.services.inventory import TripInventoryManager
from rideshare.services.vehicles import VehicleService

VEHICLES = [
    {"owner_id": "driver-1", "plate": "00123-116-16", "make": "Renault", "model": "Symbol", "seats": 4},
    {"owner_id": "driver-2", "plate": "04567-118-31", "make": "Hyundai", "model": "Accent", "seats": 4},
    {"owner_id": "driver-3", "plate": "07890-120-25", "make": "Dacia", "model": "Logan", "seats": 4},
    {"owner_id": "driver-4", "plate": "01122-119-09", "make": "Toyota", "model": "Hiace", "seats": 8},
]

TRIPS = [
    # (vehicle index, from, to, seats, price per seat)
    (0, "Alger", "Oran", 3, "1500.00"),
    (0, "Oran", "Alger", 3, "1500.00"),
    (1, "Constantine", "Annaba", 4, "800.00"),
    (2, "Setif", "Bejaia", 2, "600.00"),
    (3, "Alger", "Blida", 7, "300.00"),
    (3, "Tizi Ouzou", "Alger", 7, "450.00"),
]

CIB_CARD = CardDetails(number="1234 5678 9012 3452", expiry_month="12", expiry_year="2099", cvv="123")
EDAHABIA_CARD = CardDetails(number="5555 5555 5555 4444", expiry_month="06", expiry_year="2099", cvv="321")


async def seed():
    async with async_session_factory() as session:
        result = await session.execute(text("SELECT count(*) FROM trips"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

    encryption = EncryptionService(settings.encryption_key)
    router = PaymentRouter.from_settings(
        PaymentSettings(
            cash=CashSettings(),
            cib=DomesticCardSettings(simulate=True),
            edahabia=DomesticCardSettings(simulate=True),
        )
    )
    orchestrator = BookingOrchestrator(async_session_factory, router, encryption)
    vehicles = VehicleService(async_session_factory, encryption)

    # ── Vehicles ──────────────────────────────────────────────────────
    vehicle_rows = []
    for v in VEHICLES:
        vehicle_rows.append(
            await vehicles.register_vehicle(
                owner_id=v["owner_id"],
                license_plate=v["plate"],
                make=v["make"],
                model=v["model"],
                seats=v["seats"],
            )
        )
    print(f"  Created {len(vehicle_rows)} vehicles")

    # ── Trips ─────────────────────────────────────────────────────────
    trip_ids = []
    async with async_session_factory.begin() as session:
        inventory = TripInventoryManager(session)
        for vehicle_index, origin, destination, seats, price in TRIPS:
            vehicle = vehicle_rows[vehicle_index]
            trip = await inventory.create_trip(
                driver_id=vehicle.owner_id,
                vehicle_id=vehicle.id,
                from_city=origin,
                to_city=destination,
                total_seats=seats,
                price_per_seat=Decimal(price),
            )
            trip_ids.append(trip.id)
    print(f"  Created {len(trip_ids)} trips")

    # ── Bookings ──────────────────────────────────────────────────────
    bookings = [
        (trip_ids[0], "passenger-1", 2, "cash", None),
        (trip_ids[0], "passenger-2", 1, "cib", PaymentInstrument(card=CIB_CARD)),
        (trip_ids[2], "passenger-3", 2, "edahabia", PaymentInstrument(card=EDAHABIA_CARD)),
        (trip_ids[4], "passenger-4", 3, "cash", None),
    ]
    for trip_id, passenger_id, seats, method, instrument in bookings:
        async with async_session_factory() as session:
            trip = await TripInventoryManager(session).get_trip(trip_id)
            price = trip.price_per_seat * seats
        await orchestrator.create_booking(
            trip_id,
            passenger_id,
            seats,
            method,
            total_price=price,
            instrument=instrument,
        )
    print(f"  Created {len(bookings)} bookings")

    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
