"""polyglot: spaced-repetition scheduling and multi-source sync core."""

from polyglot.consts import VERSION

__version__ = VERSION
