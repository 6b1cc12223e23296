from __future__ import annotations

import random
from typing import Iterable, List

WORDS_BY_CATEGORY: dict[str, List[str]] = {
    "Animals": ["Elephant", "Penguin", "Giraffe", "Dolphin", "Kangaroo", "Octopus", "Owl", "Tiger", "Rabbit", "Shark"],
    "Food": ["Pizza", "Sushi", "Pancake", "Burrito", "Croissant", "Lasagna", "Popcorn", "Dumpling", "Waffle", "Curry"],
    "Objects": ["Umbrella", "Ladder", "Candle", "Backpack", "Scissors", "Telescope", "Mirror", "Pillow", "Wallet", "Compass"],
    "Places": ["Airport", "Library", "Beach", "Museum", "Hospital", "Castle", "Desert", "Stadium", "Bakery", "Volcano"],
    "Sports": ["Tennis", "Surfing", "Boxing", "Cricket", "Skiing", "Archery", "Rowing", "Fencing", "Bowling", "Karate"],
    "Jobs": ["Firefighter", "Pilot", "Dentist", "Farmer", "Chef", "Astronaut", "Plumber", "Librarian", "Detective", "Baker"],
}

DEFAULT_CATEGORIES = ["Animals", "Food"]


def unknown_categories(categories: Iterable[str]) -> List[str]:
    return [c for c in categories if c not in WORDS_BY_CATEGORY]


def pick_word(categories: Iterable[str], rng: random.Random) -> str:
    pool: List[str] = []
    for c in categories:
        pool.extend(WORDS_BY_CATEGORY.get(c, []))
    if not pool:
        raise ValueError("no words for the selected categories")
    return rng.choice(pool)
