"""Plugin specification grammar: validation and parsing.

A specification names one plugin as ``owner/name[@version][:subpath]``.
The validator is the security gate every other component relies on; the
parser is only ever handed strings that already passed it.
"""

from extsync.spec.parser import parse, parse_spec
from extsync.spec.validator import ValidationResult, ensure_valid, validate

__all__ = ["ValidationResult", "ensure_valid", "parse", "parse_spec", "validate"]
