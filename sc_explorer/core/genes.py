from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional

import pandas as pd

from sc_explorer.core.dataset import Species
from sc_explorer.core.state import Validity

logger = logging.getLogger(__name__)

MAX_TITLE_ALIASES = 5


class AliasTable:
    """
    Canonical gene symbol -> pipe-delimited alias string, for one species.

    Lookups go both ways:
    - aliases_of(symbol): raw alias string for a canonical symbol
    - symbols_for(name): canonical symbols that `name` is an alias of (or is itself),
      in table order
    """

    def __init__(self, frame: pd.DataFrame) -> None:
        frame = frame.fillna("")
        self._alias_by_symbol: Dict[str, str] = {}
        self._symbols_by_name: Dict[str, List[str]] = {}

        for symbol, alias in zip(frame["gene"].astype(str), frame["alias"].astype(str)):
            symbol = symbol.strip()
            if not symbol:
                continue
            # First occurrence wins, like a row lookup on the original table
            self._alias_by_symbol.setdefault(symbol, alias)
            self._add(symbol, symbol)
            for name in alias.split("|"):
                name = name.strip()
                if name:
                    self._add(name, symbol)

    def _add(self, name: str, symbol: str) -> None:
        symbols = self._symbols_by_name.setdefault(name, [])
        if symbol not in symbols:
            symbols.append(symbol)

    def __len__(self) -> int:
        return len(self._alias_by_symbol)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._alias_by_symbol

    def aliases_of(self, symbol: str) -> Optional[str]:
        return self._alias_by_symbol.get(symbol)

    def symbols_for(self, name: str) -> List[str]:
        return list(self._symbols_by_name.get(name, []))

    @classmethod
    def empty(cls) -> AliasTable:
        return cls(pd.DataFrame({"gene": [], "alias": []}))

    @classmethod
    def from_csv(cls, path: Path) -> AliasTable:
        """
        Read a two-column CSV (gene, alias). A missing file yields an empty table;
        lookups then fall back to exact identifiers only.
        """
        path = Path(path)
        if not path.is_file():
            logger.warning("Alias table not found; gene aliases disabled", extra={"path": str(path)})
            return cls.empty()

        frame = pd.read_csv(path, dtype=str, keep_default_na=False)
        missing = {"gene", "alias"} - set(frame.columns)
        if missing:
            logger.warning(
                "Alias table missing columns; gene aliases disabled",
                extra={"path": str(path), "missing": sorted(missing)},
            )
            return cls.empty()

        table = cls(frame)
        logger.info("Alias table loaded", extra={"path": str(path), "n_symbols": len(table)})
        return table


def normalise_case(query: str, species: Species) -> str:
    """Human symbols are upper case (TNF), mouse symbols title case (Cd4, H2-Ab1)."""
    if species is Species.HUMAN:
        return query.upper()
    if species is Species.MOUSE:
        return query.title()
    return query


class GeneResolver:
    """
    Resolves free-text gene queries to identifiers measured in a dataset.

    Stateless apart from the read-only alias tables, which are loaded once at
    process start and shared by every session.
    """

    def __init__(self, tables: Optional[Mapping[Species, AliasTable]] = None) -> None:
        self._tables: Dict[Species, AliasTable] = dict(tables or {})

    @classmethod
    def from_paths(cls, paths: Mapping[str, Path]) -> GeneResolver:
        tables = {
            Species.parse(species): AliasTable.from_csv(path)
            for species, path in paths.items()
        }
        tables.pop(Species.OTHER, None)
        return cls(tables)

    def table(self, species: Species) -> Optional[AliasTable]:
        return self._tables.get(species)

    def resolve(self, query: str, species: Species | str, valid_identifiers: Iterable[str]) -> str:
        """
        Return the identifier for `query`, or "" when it cannot be resolved.

        1. exact (case-sensitive) match in valid_identifiers wins
        2. otherwise case-normalise per species and take the first canonical symbol
           the alias table maps it to
        3. discard anything not measured in this dataset
        """
        query = (query or "").strip()
        if not query:
            return ""

        valid = valid_identifiers if isinstance(valid_identifiers, (set, frozenset)) else set(valid_identifiers)
        if query in valid:
            return query

        species = Species.parse(species)
        table = self._tables.get(species)
        if species is Species.OTHER or table is None:
            return ""

        symbols = table.symbols_for(normalise_case(query, species))
        resolved = symbols[0] if symbols else ""

        if resolved not in valid:
            return ""
        return resolved

    def title(self, symbol: str, species: Species | str) -> str:
        """Display title: symbol plus up to five aliases, e.g. 'TNF (TNFA|TNFSF2)'."""
        table = self._tables.get(Species.parse(species))
        if table is None:
            return symbol

        alias = table.aliases_of(symbol)
        if not alias:
            return symbol

        names = alias.split("|")
        if len(names) > MAX_TITLE_ALIASES:
            alias = "|".join(names[:MAX_TITLE_ALIASES])
        return f"{symbol} ({alias})"

    @staticmethod
    def validity(query: str, resolved: str) -> Validity:
        if not (query or "").strip():
            return Validity.NEUTRAL
        return Validity.VALID if resolved else Validity.INVALID
