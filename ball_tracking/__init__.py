"""Ball tracking state estimation for legged soccer robots."""

__version__ = "0.1.0"
