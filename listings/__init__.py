"""Listing helpers for the property pages."""

from listings.description_parser import CATEGORY_ORDER, parse_description, visible_sections

__all__ = ["CATEGORY_ORDER", "parse_description", "visible_sections"]
