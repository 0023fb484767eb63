"""Seed a handful of sample user profiles into the users table."""
import asyncio
import sys
sys.path.insert(0, ".")

from app.config import get_settings
from app.database import create_engine, create_session_factory
from app.errors import ConflictError
from app.schemas.user import UserCreate
from app.services.user_service import UserService


SAMPLE_USERS = [
    {
        "fullName": "Ada Lovelace",
        "email": "ada@example.com",
        "bio": "Analyst of the Analytical Engine.",
        "location": "London",
        "dateOfBirth": "1815-12-10",
    },
    {
        "fullName": "Alan Turing",
        "email": "alan.turing@example.com",
        "phoneNumber": "+441234567890",
        "bio": "Computability, codebreaking and morphogenesis.",
        "location": "Manchester",
    },
    {
        "fullName": "Grace Hopper",
        "email": "grace@example.com",
        "bio": "Compilers and debugging, literally.",
        "location": "New York",
        "avatarUrl": "https://example.com/avatars/grace.png",
    },
    {
        "fullName": "Katherine Johnson",
        "email": "katherine@example.com",
        "bio": "Orbital mechanics by hand.",
        "location": "Hampton",
    },
    {
        "fullName": "Edsger Dijkstra",
        "email": "ewd@example.com",
        "location": "Nuenen",
    },
]


async def seed():
    engine = create_engine(get_settings())
    service = UserService(create_session_factory(engine))
    try:
        for data in SAMPLE_USERS:
            try:
                user = await service.create_user(UserCreate.model_validate(data))
                print(f"  Seeded {user.full_name} ({user.id})")
            except ConflictError:
                print(f"  {data['email']} already exists, skipping.")
    finally:
        await engine.dispose()
    print("Done seeding users.")


if __name__ == "__main__":
    asyncio.run(seed())
