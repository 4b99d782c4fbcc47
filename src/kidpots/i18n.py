"""Internationalisation helpers for KidPots."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from .config import DEFAULT_LOCALE


class _KeepMissing(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class Translator:
    """Store translations for the messages parents see."""

    def __init__(
        self,
        default_locale: str = DEFAULT_LOCALE,
        *,
        translations: Optional[Mapping[str, Mapping[str, str]]] = None,
    ) -> None:
        self.default_locale = default_locale
        self._translations: Dict[str, Dict[str, str]] = {
            "en": {
                "error.validation": "Please check your input.",
                "error.negative_amount": "Amounts cannot be negative.",
                "error.slice_mismatch": "The allocation must equal the total.",
                "error.policy_violation": "Put something into save or invest.",
                "error.donate_disabled": "The donate pot is not enabled for this child yet.",
                "error.append_rejected": "This entry could not be recorded. Please check amount and date.",
                "error.insufficient_funds": "Not enough money in this pot.",
                "error.threshold": "This pot cannot be used yet.",
                "error.below_threshold": "The invest pot has not reached its threshold yet.",
                "error.contention": "Something changed at the same time. Please try again.",
                "error.accrual": "Interest could not be calculated.",
                "error.no_base_date": "There is no start date for interest.",
                "error.persistence": "The service is unavailable. Please try again.",
                "error.child_not_found": "Child not found.",
                "error.wish_not_found": "Wish not found.",
                "error.wish_redeemed": "This wish was already redeemed.",
                "error.error": "Something went wrong. Please try again.",
                "interest.nothing_due": "No interest due.",
                "interest.no_growth": "No growth calculated.",
                "interest.posted": "Interest credited.",
            },
            "de": {
                "error.validation": "Bitte Eingaben prüfen.",
                "error.negative_amount": "Beträge dürfen nicht negativ sein.",
                "error.slice_mismatch": "Die Aufteilung muss dem Gesamtbetrag entsprechen.",
                "error.policy_violation": "Bitte etwas in Sparen oder Investieren legen.",
                "error.donate_disabled": "Der Spenden-Topf ist für dieses Kind noch nicht aktiv.",
                "error.append_rejected": "Der Eintrag konnte nicht gespeichert werden. Bitte Betrag und Datum prüfen.",
                "error.insufficient_funds": "Nicht genug Geld in diesem Topf.",
                "error.threshold": "Dieser Topf kann noch nicht verwendet werden.",
                "error.below_threshold": "Der Invest-Topf hat die Schwelle noch nicht erreicht.",
                "error.contention": "Gleichzeitig hat sich etwas geändert. Bitte erneut versuchen.",
                "error.accrual": "Zinsen konnten nicht berechnet werden.",
                "error.no_base_date": "Kein Basisdatum für Zinsen.",
                "error.persistence": "Der Dienst ist nicht erreichbar. Bitte erneut versuchen.",
                "error.child_not_found": "Kind nicht gefunden.",
                "error.wish_not_found": "Wunsch nicht gefunden.",
                "error.wish_redeemed": "Dieser Wunsch wurde bereits eingelöst.",
                "error.error": "Etwas ist schiefgelaufen. Bitte erneut versuchen.",
                "interest.nothing_due": "Keine Zinsen fällig.",
                "interest.no_growth": "Kein Zuwachs berechnet.",
                "interest.posted": "Zinsen gutgeschrieben.",
            },
        }
        if translations:
            for locale, mapping in translations.items():
                self._translations.setdefault(locale, {}).update(mapping)

    def set_translation(self, locale: str, key: str, value: str) -> None:
        self._translations.setdefault(locale, {})[key] = value

    def translate(self, key: str, *, locale: Optional[str] = None, **values: Any) -> str:
        target_locale = locale or self.default_locale
        language = self._translations.get(target_locale) or self._translations["en"]
        template = language.get(key) or self._translations["en"].get(key, key)
        return template.format_map(_KeepMissing(values)) if values else template

    def error_message(self, code: str, *, locale: Optional[str] = None) -> str:
        return self.translate(f"error.{code}", locale=locale)

    def available_locales(self) -> tuple[str, ...]:
        return tuple(sorted(self._translations))


__all__ = ["Translator"]
