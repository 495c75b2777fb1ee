"""Construction procurement & operations schedule tracker."""

__version__ = "1.0.0"
