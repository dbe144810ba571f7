"""Startup data: the configured admin account and demo catalog entries."""

from typing import Optional

from pymongo.database import Database

from auth import hash_password
from config import Settings
from database import create_document, update_document
from logging_config import get_logger
from schemas import Alien, User

log = get_logger("seed")

DEMO_ALIENS = [
    {
        "name": "Rizzok",
        "faction": "Acid",
        "planet": "Glorax Marsh",
        "rarity": "Epic",
        "price": 500,
        "image": "/uploads/alien-rizzok.png",
        "backstory": "A marsh scout of the Acid faction who patrols the glowing sludge pits of Glorax.",
        "abilities": ["Toxic Tongue Lash", "Marsh Cloak", "Spore Pulse"],
        "clothingStyle": "Biohazard tactical armor with venom sacs",
        "featured": True,
    },
    {
        "name": "Viktoh",
        "faction": "Chromalight",
        "planet": "Prismara",
        "rarity": "Legendary",
        "price": 1000,
        "image": "/uploads/alien-viktoh.png",
        "backstory": "A being of photonic energy who guided travellers through the prismatic storms of Prismara.",
        "abilities": ["Lightbeam Pulse", "Prism Shift", "Radiant Echo"],
        "clothingStyle": "Luminous flowweave vestments",
        "featured": True,
    },
    {
        "name": "Vohrak",
        "faction": "Cryonox",
        "planet": "Niflheim Prime",
        "rarity": "Rare",
        "price": 300,
        "image": "/uploads/alien-vohrak.png",
        "backstory": "An ice sentinel raised during the century-long Shatterstorm.",
        "abilities": ["Frost Rend", "Cryo Camouflage"],
        "clothingStyle": "Glacial plate armor",
        "featured": True,
    },
    {
        "name": "Lunexa",
        "faction": "Prism",
        "planet": "Aurora Helix",
        "rarity": "Legendary",
        "price": 1000,
        "image": "/uploads/alien-lunexa.png",
        "backstory": "High priestess of the Astralborn, able to bend light and gravity.",
        "abilities": ["Prism Shift", "Aurora Pulse", "Crystalline Refract"],
        "clothingStyle": "Crystalline bioluminescent armor",
        "featured": True,
    },
    {
        "name": "Thornyx",
        "faction": "Spinehowl",
        "planet": "Krellion Prime",
        "rarity": "Common",
        "price": 100,
        "image": "/uploads/alien-thornyx.png",
        "backstory": "A feral enforcer of the Spinehowl who hunts intruders on the lunar plains.",
        "abilities": ["Quill Burst", "Moonstalk"],
        "clothingStyle": "Bone-plated hunting harness",
    },
    {
        "name": "Glimmet",
        "faction": "Acid",
        "planet": "Glorax Marsh",
        "rarity": "Common",
        "price": 150,
        "image": "/uploads/alien-glimmet.png",
        "backstory": "A fungus farmer who tends the bio-reactive pools.",
        "abilities": ["Spore Cloud"],
        "clothingStyle": "Mycelium work robes",
        "inStock": False,
    },
]


def ensure_admin_exists(db: Database, settings: Settings) -> Optional[dict]:
    """Create the configured admin, or promote it and reset its password."""
    if not settings.admin_email or not settings.admin_password:
        log.info("No admin credentials configured; skipping admin bootstrap")
        return None
    email = settings.admin_email.lower()
    password_hash = hash_password(settings.admin_password)
    existing = db["user"].find_one({"email": email})
    if existing:
        log.info("Admin user updated: %s", email)
        return update_document(db, "user", existing["_id"], {"is_admin": True, "password_hash": password_hash})

    admin = User(
        email=email,
        password_hash=password_hash,
        first_name=settings.admin_first_name,
        last_name=settings.admin_last_name,
        is_admin=True,
    )
    create_document(db, "user", admin)
    log.info("Admin user created: %s", email)
    return db["user"].find_one({"email": email})


def seed_aliens(db: Database) -> int:
    """Insert the demo aliens into an empty catalog; returns how many were added."""
    if db["alien"].count_documents({}) > 0:
        return 0
    for data in DEMO_ALIENS:
        create_document(db, "alien", Alien.model_validate(data))
    log.info("Seeded %d demo aliens", len(DEMO_ALIENS))
    return len(DEMO_ALIENS)
