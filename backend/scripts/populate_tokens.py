#!/usr/bin/env python3
"""
Seed the shop_credentials table from TIKTOK_SHOP{n}_ACCESS_TOKEN,
TIKTOK_SHOP{n}_REFRESH_TOKEN and TIKTOK_SHOP{n}_SHOP_CIPHER in .env.
Run from backend/: python -m scripts.populate_tokens

Safe to re-run: existing shops are updated in place.
"""
import asyncio
import sys


async def main(session_factory=None) -> int:
    from app.database import async_session, init_db
    from app.services.credential_store import KNOWN_SHOPS, seed_from_environment

    if session_factory is None:
        await init_db()
        session_factory = async_session

    async with session_factory() as db:
        seeded = await seed_from_environment(db)
        await db.commit()

    for shop_number, shop in KNOWN_SHOPS.items():
        status = "saved" if shop_number in seeded else "skipped (missing env tokens)"
        print(f"Shop {shop_number} ({shop['name']}): {status}")

    if not seeded:
        print("Error: no shop had a complete set of tokens in the environment")
        return 1
    print(f"Populated {len(seeded)} shop(s)")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
