"""Connection core for the Cognitive Dungeon game client."""

__version__ = "0.4.0"
