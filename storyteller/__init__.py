"""StoryTeller: voice storytelling server and session client."""

__version__ = "0.1.0"
