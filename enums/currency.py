from enum import Enum


class Currency(str, Enum):
    USD = "USD"
    EUR = "EUR"
    GBP = "GBP"

    def get_symbol(self) -> str:
        return {
            Currency.USD: "$",
            Currency.EUR: "€",
            Currency.GBP: "£",
        }[self]
