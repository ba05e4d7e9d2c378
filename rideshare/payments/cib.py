"""CIB (Carte Interbancaire) -- Algerian interbank card network."""

from __future__ import annotations

from .cards import DomesticCardStrategy


class CIBStrategy(DomesticCardStrategy):
    method = "cib"
    transaction_prefix = "CIB"
    approve_prefixes = ("1234",)

    def get_name(self) -> str:
        return "CIB Card"

    def get_description(self) -> str:
        return "Pay with Algerian interbank card (CIB)"
