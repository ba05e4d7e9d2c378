"""Edahabia -- Algerian postal service card, issued in the ``5`` range."""

from __future__ import annotations

import re

from .cards import DomesticCardStrategy


class EdahabiaStrategy(DomesticCardStrategy):
    method = "edahabia"
    number_pattern = re.compile(r"^5\d{15}$")
    transaction_prefix = "EDA"
    approve_prefixes = ("5",)
    simulated_decline_code = "INVALID_CARD"
    simulated_decline_error = "Invalid Edahabia card"

    def get_name(self) -> str:
        return "Edahabia Card"

    def get_description(self) -> str:
        return "Pay with Algerian postal service Edahabia card"
