"""Two-word names for untitled assignments."""

from __future__ import annotations

import random

ADJECTIVES = (
    "amber", "ancient", "autumn", "billowing", "bitter", "bold", "brave", "calm",
    "crimson", "curly", "damp", "dawn", "delicate", "divine", "dry", "empty",
    "falling", "fancy", "floral", "fragrant", "frosty", "gentle", "green", "hidden",
    "holy", "icy", "jolly", "late", "lingering", "little", "lively", "long",
    "lucky", "misty", "morning", "muddy", "nameless", "noisy", "odd", "old",
    "orange", "patient", "plain", "polished", "proud", "purple", "quiet", "rapid",
    "raspy", "red", "restless", "rough", "round", "royal", "shiny", "shrill",
    "shy", "silent", "small", "snowy", "soft", "solitary", "sparkling", "spring",
    "square", "steep", "still", "summer", "super", "sweet", "throbbing", "tight",
    "tiny", "twilight", "wandering", "weathered", "white", "wild", "winter", "wispy",
    "withered", "yellow", "young",
)

NOUNS = (
    "art", "band", "bar", "base", "bird", "block", "boat", "bonus", "bread",
    "breeze", "brook", "bush", "butterfly", "cake", "cell", "cherry", "cloud",
    "credit", "darkness", "dawn", "dew", "disk", "dream", "dust", "feather",
    "field", "fire", "firefly", "flower", "fog", "forest", "frog", "frost",
    "glade", "glitter", "grass", "hall", "hat", "haze", "heart", "hill", "king",
    "lab", "lake", "leaf", "limit", "math", "meadow", "mode", "moon", "morning",
    "mountain", "mouse", "mud", "night", "paper", "pine", "poetry", "pond",
    "queen", "rain", "recipe", "resonance", "rice", "river", "salad", "scene",
    "sea", "shadow", "shape", "silence", "sky", "smoke", "snow", "snowflake",
    "sound", "star", "sun", "sunset", "surf", "term", "thunder", "tooth", "tree",
    "truth", "union", "unit", "violet", "voice", "water", "waterfall", "wave",
    "wildflower", "wind", "wood",
)


def get(rng: random.Random | None = None) -> str:
    """Return a name like ``"misty meadow"``."""
    rng = rng or random
    return f"{rng.choice(ADJECTIVES)} {rng.choice(NOUNS)}"
