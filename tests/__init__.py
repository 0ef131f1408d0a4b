"""StoryTeller test suite.

- tests/unit/: components in isolation (composer, gateway, endpoints, controller)
- tests/fakes.py: media room, capability and session client fakes
- tests/conftest.py: shared fixtures and environment defaults
"""
