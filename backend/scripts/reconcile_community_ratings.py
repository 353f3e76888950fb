import argparse
import asyncio

from app.core.config import settings
from app.core.logging_config import configure_logging
from app.db.session import SessionLocal, engine
from app.services.community_rating import (
    reconcile_community_rating_for_game,
    rollback_community_rating_for_game,
)
from app.services.rating_store import RatingStore


def _parse_args():
    parser = argparse.ArgumentParser(description="Reconcile community ratings for one game or a whole community.")
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--game-id")
    target.add_argument("--community-id")
    parser.add_argument("--rollback", action="store_true", help="roll back --game-id instead of reconciling it")
    args = parser.parse_args()
    if args.rollback and not args.game_id:
        parser.error("--rollback requires --game-id")
    return args


async def _run_game(game_id: str, rollback: bool):
    async with SessionLocal() as db:
        store = RatingStore(db)
        try:
            if rollback:
                await rollback_community_rating_for_game(store, game_id)
            else:
                await reconcile_community_rating_for_game(store, game_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise


async def _list_game_ids(community_id: str) -> list[str]:
    async with SessionLocal() as db:
        return await RatingStore(db).list_community_game_ids(community_id)


async def main():
    args = _parse_args()
    configure_logging(service="community-rating-scripts", environment=settings.ENV, log_level=settings.LOG_LEVEL)
    try:
        if args.game_id:
            await _run_game(args.game_id, args.rollback)
            action = "rollback" if args.rollback else "reconcile"
            print(f"ok: {action} done (game={args.game_id})")
            return

        game_ids = await _list_game_ids(args.community_id)
        for game_id in game_ids:
            await _run_game(game_id, rollback=False)
        print(f"ok: reconcile done (community={args.community_id}, games={len(game_ids)})")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
