"""Picks display copy variants without showing the same one twice in a row."""

import random
from typing import Optional, Sequence

from accessgate.database import Database


class RotationPicker:
    """Per-(user, stage) rotation over copy variants. Purely cosmetic."""

    def __init__(self, db: Database, rng: Optional[random.Random] = None):
        self.db = db
        self.rng = rng or random.Random()

    def pick(self, user_id: int, stage: str, variants: Sequence[str]) -> str:
        if not variants:
            return ""
        if len(variants) == 1:
            return variants[0]

        last_idx = self.db.get_rotation_index(user_id, stage)
        candidates = [i for i in range(len(variants)) if i != last_idx]
        idx = self.rng.choice(candidates)
        self.db.set_rotation_index(user_id, stage, idx)
        return variants[idx]
