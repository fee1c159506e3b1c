"""Reading and editing the user's configuration file."""

from extsync.config.editor import add_to_config, insert_spec
from extsync.config.extractor import extract, extract_file, find_array_bounds, read_config

__all__ = ["add_to_config", "extract", "extract_file", "find_array_bounds", "insert_spec", "read_config"]
