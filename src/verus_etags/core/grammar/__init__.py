from verus_etags.core.grammar.rust import RustParser
from verus_etags.core.grammar.verus import VerusParser

DEFAULT_PARSERS = (VerusParser(), RustParser())

__all__ = [
    "DEFAULT_PARSERS",
    "RustParser",
    "VerusParser",
]
