"""
Country code reconciliation.

Records, the reference table and the world topology each name countries in a
different identifier space: ISO alpha-2 (salary records), ISO alpha-3
(EM-DAT), numeric ids (world-atlas topology) and display names. This module
builds every lookup direction once at load time so the rest of the dashboard
only ever deals with numeric ids.

Lookups never raise for unknown codes, they return None: historical or
aggregate codes are expected in the source data and simply mean
"no geographic match".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional

import pandas as pd

logger = logging.getLogger(__name__)

REFERENCE_COLUMNS = ["country_code_alpha2", "country_code_alpha3", "country_id", "country_name"]
CODE_SPACES = ("alpha2", "alpha3", "id")


@dataclass(frozen=True)
class CountryIdentity:
    id: int
    alpha2: str
    alpha3: str
    name: str


def parse_country_id(value) -> Optional[int]:
    """'004', 4, 4.0 -> 4. Anything else -> None."""
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        return None
    try:
        return int(float(str(value).strip()))
    except ValueError:
        return None


def _norm_code(code) -> Optional[str]:
    if code is None or not isinstance(code, str):
        return None
    code = code.strip().upper()
    return code or None


class CountryCodes:
    """Bidirectional lookup tables between the country identifier spaces."""

    def __init__(self, identities: Iterable[CountryIdentity]):
        self._by_id: Dict[int, CountryIdentity] = {}
        self._alpha2_to_id: Dict[str, int] = {}
        self._alpha3_to_id: Dict[str, int] = {}

        for ident in identities:
            if ident.id in self._by_id:
                logger.warning("Duplicate country id %s (%s) in reference table, keeping %s",
                               ident.id, ident.name, self._by_id[ident.id].name)
                continue
            if ident.alpha2 in self._alpha2_to_id or ident.alpha3 in self._alpha3_to_id:
                logger.warning("Duplicate country code %s/%s in reference table, skipping",
                               ident.alpha2, ident.alpha3)
                continue
            self._by_id[ident.id] = ident
            self._alpha2_to_id[ident.alpha2] = ident.id
            self._alpha3_to_id[ident.alpha3] = ident.id

    # -----------------------------
    # BUILDERS
    # -----------------------------
    @classmethod
    def from_rows(cls, rows: Iterable[Mapping]) -> "CountryCodes":
        identities = []
        skipped = 0
        for row in rows:
            cid = parse_country_id(row.get("country_id"))
            a2 = _norm_code(row.get("country_code_alpha2"))
            a3 = _norm_code(row.get("country_code_alpha3"))
            if cid is None or a2 is None or a3 is None:
                skipped += 1
                continue
            name = str(row.get("country_name") or "").strip() or a3
            identities.append(CountryIdentity(id=cid, alpha2=a2, alpha3=a3, name=name))
        if skipped:
            logger.warning("Skipped %d incomplete reference rows", skipped)
        return cls(identities)

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> "CountryCodes":
        missing = [c for c in REFERENCE_COLUMNS if c not in df.columns]
        if missing:
            raise KeyError(f"Reference table is missing columns {missing}. Available={list(df.columns)}")
        return cls.from_rows(df[REFERENCE_COLUMNS].to_dict("records"))

    @classmethod
    def from_pycountry(cls) -> "CountryCodes":
        """Reference table from the ISO 3166 registry (numeric codes match world-atlas ids)."""
        import pycountry

        rows = [
            {
                "country_code_alpha2": c.alpha_2,
                "country_code_alpha3": c.alpha_3,
                "country_id": c.numeric,
                "country_name": getattr(c, "common_name", None) or c.name,
            }
            for c in pycountry.countries
        ]
        return cls.from_rows(rows)

    # -----------------------------
    # LOOKUPS
    # -----------------------------
    def alpha2_to_id(self, alpha2) -> Optional[int]:
        return self._alpha2_to_id.get(_norm_code(alpha2))

    def alpha3_to_id(self, alpha3) -> Optional[int]:
        return self._alpha3_to_id.get(_norm_code(alpha3))

    def alpha2_to_alpha3(self, alpha2) -> Optional[str]:
        return self.id_to_alpha3(self.alpha2_to_id(alpha2))

    def alpha3_to_alpha2(self, alpha3) -> Optional[str]:
        return self.id_to_alpha2(self.alpha3_to_id(alpha3))

    def identity(self, country_id) -> Optional[CountryIdentity]:
        return self._by_id.get(parse_country_id(country_id))

    def id_to_name(self, country_id) -> Optional[str]:
        ident = self.identity(country_id)
        return ident.name if ident else None

    def id_to_alpha2(self, country_id) -> Optional[str]:
        ident = self.identity(country_id)
        return ident.alpha2 if ident else None

    def id_to_alpha3(self, country_id) -> Optional[str]:
        ident = self.identity(country_id)
        return ident.alpha3 if ident else None

    def resolve(self, code, space: str) -> Optional[int]:
        """Numeric id for a code given in `space` ("alpha2", "alpha3" or "id")."""
        if space == "alpha2":
            return self.alpha2_to_id(code)
        if space == "alpha3":
            return self.alpha3_to_id(code)
        if space == "id":
            cid = parse_country_id(code)
            return cid if cid in self._by_id else None
        raise ValueError(f"Unknown code space '{space}'. Expected one of {CODE_SPACES}")

    def resolve_series(self, codes: pd.Series, space: str) -> pd.Series:
        """Vectorised `resolve`; unresolved codes become <NA>."""
        uniques = {code: self.resolve(code, space) for code in pd.unique(codes.dropna())}
        return pd.to_numeric(codes.map(uniques), errors="coerce").astype("Int64")

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, country_id) -> bool:
        return parse_country_id(country_id) in self._by_id

    def __iter__(self):
        return iter(self._by_id.values())
