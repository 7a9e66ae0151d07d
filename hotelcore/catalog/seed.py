from typing import List, Tuple

from loguru import logger
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from hotelcore.catalog.models import ResourceCategory, ResourceInstance

# (room type, nightly rate in rupees, max occupancy, number of rooms)
ROOM_TYPES: List[Tuple[str, int, int, int]] = [
    ("KHWABGAH (Penthouse)", 25000, 4, 2),
    ("PRESIDENTIAL SUITE", 18000, 3, 3),
    ("HERITAGE SUITES", 12000, 2, 5),
    ("CLUB ROYAL ROOMS", 8000, 2, 5),
    ("CLUB ROOMS", 6000, 2, 5),
]

# (hall name, rate per event in rupees, banquet seating)
BANQUET_HALLS: List[Tuple[str, int, int]] = [
    ("Grand Maharaja Ballroom", 150000, 500),
    ("Royal Durbar Hall", 120000, 400),
    ("Imperial Wedding Hall", 100000, 350),
    ("Heritage Maharaja Hall", 90000, 300),
    ("Crystal Banquet Chamber", 80000, 200),
    ("Royal Garden Terrace", 75000, 250),
]

# (table number, seats)
RESTAURANT_TABLES: List[Tuple[str, int]] = [
    ("T1", 2), ("T2", 2), ("T3", 4), ("T4", 4), ("T5", 6), ("T6", 8),
]


def seed_catalog(engine: Engine) -> int:
    """Load the default catalog into an empty database. Returns rows added."""
    with Session(engine) as session:
        if session.exec(select(ResourceInstance).limit(1)).first() is not None:
            return 0
        rows: List[ResourceInstance] = []
        for floor, (name, rate, occupancy, count) in enumerate(ROOM_TYPES, start=1):
            for i in range(1, count + 1):
                rows.append(ResourceInstance(category=ResourceCategory.ROOM, label=f"{floor}0{i}",
                                             group=name, price_minor=rate * 100, capacity=occupancy))
        for name, rate, seats in BANQUET_HALLS:
            rows.append(ResourceInstance(category=ResourceCategory.BANQUET, label=name,
                                         price_minor=rate * 100, capacity=seats))
        for number, seats in RESTAURANT_TABLES:
            rows.append(ResourceInstance(category=ResourceCategory.RESTAURANT, label=number,
                                         price_minor=0, capacity=seats))
        session.add_all(rows)
        session.commit()
    logger.bind(event="catalog_seed").info(f"Seeded {len(rows)} resources")
    return len(rows)
