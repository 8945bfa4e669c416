"""Utility functions for rapprochement."""

from rapprochement.utils.date_parser import parse_date
from rapprochement.utils.amount_parser import parse_amount
from rapprochement.utils.keywords import parse_keywords, matches_label

__all__ = ["parse_date", "parse_amount", "parse_keywords", "matches_label"]
