"""Configuration parsing for Terraform-style resource blocks."""

from .hcl import (
    ConfigParser,
    ParsedConfig,
    ResourceRecord,
    find_resources_by_type,
    get_bool,
    get_number,
    get_property,
    get_string,
    has_block,
    mask_ignored,
    parse,
)

__all__ = [
    "ConfigParser",
    "ParsedConfig",
    "ResourceRecord",
    "find_resources_by_type",
    "get_bool",
    "get_number",
    "get_property",
    "get_string",
    "has_block",
    "mask_ignored",
    "parse",
]
