"""Circulation vertical configuration.

Loads CirculationConfig from the environment once at import, the same
instance the API lifespan hands to the engine.
"""

from patterns.domain_config import CirculationConfig

config = CirculationConfig.from_env()
