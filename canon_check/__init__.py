"""canon-check - Canon compliance engine.

Turns canon rule sources into immutable rule sets, evaluates artifacts against
them and gates commits or publication on the resulting verdict.
"""

__version__ = "0.1.0"
