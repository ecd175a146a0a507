"""
Load danger zones from a JSON file into the database.

The file holds a list of zones, each either a circle
    {"name": ..., "classification": "danger", "center": [lat, lon], "radius_m": 500}
or a polygon
    {"name": ..., "classification": "caution", "polygon": {"type": "Polygon", "coordinates": [...]}}

Usage:
    python scripts/seed_danger_zones.py zones.json [--replace]
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from shapely.geometry import shape
from sqlalchemy import delete

# Run from a checkout without installing the package
sys.path.append(str(Path(__file__).parent.parent))

from tourist_safety.db.database import AsyncSessionLocal, init_db
from tourist_safety.models.emergency_models import DangerZone
from tourist_safety.models.schemas.emergency_schemas import ZoneClassification

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger("seed_danger_zones")


def build_zone(entry: dict) -> DangerZone:
    classification = ZoneClassification(entry.get("classification", "danger"))
    zone = DangerZone(
        name=entry["name"],
        classification=classification.value,
        description=entry.get("description")
    )

    if "polygon" in entry:
        geometry = shape(entry["polygon"])
        if not geometry.is_valid:
            raise ValueError(f"Zone '{entry['name']}' has an invalid polygon")
        zone.polygon = entry["polygon"]
    else:
        latitude, longitude = entry["center"]
        zone.center_latitude = float(latitude)
        zone.center_longitude = float(longitude)
        zone.radius_m = float(entry["radius_m"])

    return zone


async def seed_danger_zones(path: str, replace: bool = False) -> int:
    with open(path, encoding="utf-8") as handle:
        entries = json.load(handle)

    zones = [build_zone(entry) for entry in entries]

    await init_db()
    async with AsyncSessionLocal() as db:
        if replace:
            await db.execute(delete(DangerZone))
        db.add_all(zones)
        await db.commit()

    logger.info(f"Seeded {len(zones)} danger zone(s) from {path}")
    return len(zones)


def main():
    parser = argparse.ArgumentParser(description="Load danger zones into the database")
    parser.add_argument("path", help="JSON file with a list of zones")
    parser.add_argument("--replace", action="store_true", help="Delete existing zones first")
    args = parser.parse_args()
    asyncio.run(seed_danger_zones(args.path, args.replace))


if __name__ == "__main__":
    main()
