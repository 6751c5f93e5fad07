"""
Game Profiles

Detection heuristics are tuned to one game's kill feed, HUD and audio. The
fusion algorithm itself is game-agnostic; everything game-specific lives here.
"""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class GameProfile:
    """Vocabularies and capture hints for one game title.

    Attributes:
        name: Display name of the game.
        killfeed_terms: Kill-feed text fragments that indicate an elimination.
        weapons: Weapon names searched in detection evidence, in priority order.
        visual_terms: Image-classifier label fragments treated as kill indicators.
        audio_terms: Audio-classifier label fragments treated as kill sounds.
        capture_keywords: Capture-source name fragments identifying the game window.
        screen_keywords: Fallback capture-source name fragments for a full screen.
    """
    name: str
    killfeed_terms: Tuple[str, ...]
    weapons: Tuple[str, ...]
    visual_terms: Tuple[str, ...] = ('crosshair', 'elimination', 'target', 'scope', 'weapon')
    audio_terms: Tuple[str, ...] = ('gunshot', 'explosion', 'weapon', 'shot', 'fire', 'bang')
    capture_keywords: Tuple[str, ...] = ()
    screen_keywords: Tuple[str, ...] = ('screen', 'entire')

    @property
    def slug(self) -> str:
        return self.name.lower().replace(' ', '-')


VALORANT = GameProfile(
    name="Valorant",
    killfeed_terms=(
        'eliminated',
        'killed',
        'headshot',
        'you killed',
        'you eliminated',
        'vandal',
        'phantom',
        'operator',
        'sheriff',
        'spectre',
    ),
    weapons=('vandal', 'phantom', 'operator', 'sheriff', 'spectre', 'odin'),
    capture_keywords=('valorant', 'riot'),
)

PROFILES = {
    'valorant': VALORANT,
}


def get_profile(name: str) -> GameProfile:
    """Look up a profile by name (case-insensitive)."""
    try:
        return PROFILES[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown game profile '{name}'. Available: {', '.join(sorted(PROFILES))}")
