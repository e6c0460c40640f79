import random

from balldrop.config import configure_logging, load_config
from balldrop.game import Game


def create_game(env_file: str | None = None, seed: int | None = None, **overrides) -> Game:
    config = load_config(env_file, **overrides)
    configure_logging()
    rng = random.Random(seed) if seed is not None else None
    return Game(config, rng=rng)
