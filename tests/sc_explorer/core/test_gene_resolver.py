import pandas as pd

from sc_explorer.core.dataset import Species
from sc_explorer.core.genes import AliasTable, GeneResolver, normalise_case
from sc_explorer.core.state import Validity

VALID = {"TNF", "CD4", "PTPRC", "tnf_like"}


def test_exact_match_wins_over_alias_lookup(resolver):
    assert resolver.resolve("TNF", Species.HUMAN, VALID) == "TNF"
    # exact match is case-sensitive and takes priority
    assert resolver.resolve("tnf_like", Species.HUMAN, VALID) == "tnf_like"


def test_alias_resolves_to_canonical_symbol(resolver):
    # Arrange: 'TNF' -> 'TNFA|TNFSF2'; query is lower case
    # Act / Assert: upper-cased 'TNFA' hits the alias and maps back to 'TNF'
    assert resolver.resolve("tnfa", Species.HUMAN, VALID) == "TNF"
    assert resolver.resolve("TNFA", "human", VALID) == "TNF"


def test_mouse_queries_are_title_cased(resolver):
    assert resolver.resolve("l3t4", Species.MOUSE, {"Cd4"}) == "Cd4"
    assert resolver.resolve("CD4", Species.MOUSE, {"Cd4"}) == "Cd4"


def test_hyphenated_mouse_symbols_resolve():
    mouse = AliasTable(pd.DataFrame({"gene": ["H2-Ab1"], "alias": ["IAb|H-2Ab1"]}))
    resolver = GeneResolver({Species.MOUSE: mouse})

    # every hyphen-separated part is capitalised: h2-ab1 -> H2-Ab1
    assert resolver.resolve("h2-ab1", Species.MOUSE, {"H2-Ab1"}) == "H2-Ab1"
    assert resolver.resolve("h-2ab1", Species.MOUSE, {"H2-Ab1"}) == "H2-Ab1"


def test_symbol_not_measured_in_dataset_is_discarded(resolver):
    assert resolver.resolve("TNFA", Species.HUMAN, {"CD4"}) == ""


def test_unknown_and_empty_queries_resolve_to_empty(resolver):
    assert resolver.resolve("NOPE", Species.HUMAN, VALID) == ""
    assert resolver.resolve("", Species.HUMAN, VALID) == ""
    assert resolver.resolve("   ", Species.HUMAN, VALID) == ""


def test_other_species_only_uses_exact_matches(resolver):
    assert resolver.resolve("TNF", Species.OTHER, VALID) == "TNF"
    assert resolver.resolve("TNFA", Species.OTHER, VALID) == ""


def test_resolution_is_idempotent(resolver):
    for query in ["TNFA", "tnfa", "TNF", "CD45", "cd4mut"]:
        once = resolver.resolve(query, Species.HUMAN, VALID)
        if once:
            assert resolver.resolve(once, Species.HUMAN, VALID) == once


def test_title_appends_at_most_five_aliases(resolver):
    assert resolver.title("TNF", Species.HUMAN) == "TNF (TNFA|TNFSF2)"
    assert resolver.title("PTPRC", Species.HUMAN) == "PTPRC (CD45|LCA|LY5|T200|CD45R)"


def test_title_without_alias_entry_is_bare_symbol(resolver):
    assert resolver.title("g5", Species.HUMAN) == "g5"
    assert resolver.title("TNF", Species.OTHER) == "TNF"


def test_validity_signal():
    assert GeneResolver.validity("", "") is Validity.NEUTRAL
    assert GeneResolver.validity("TNFA", "TNF") is Validity.VALID
    assert GeneResolver.validity("NOPE", "") is Validity.INVALID


def test_alias_table_first_symbol_wins_for_shared_alias():
    table = AliasTable(pd.DataFrame({"gene": ["A1", "A2"], "alias": ["SHARED|X", "SHARED"]}))

    assert table.symbols_for("SHARED") == ["A1", "A2"]
    assert table.aliases_of("A2") == "SHARED"
    assert "A1" in table and len(table) == 2


def test_alias_table_from_missing_csv_is_empty(tmp_path):
    table = AliasTable.from_csv(tmp_path / "missing.csv")
    assert len(table) == 0


def test_alias_table_from_csv(tmp_path):
    path = tmp_path / "gene-human.csv"
    path.write_text("gene,alias\nTNF,TNFA|TNFSF2\nCD4,\n")

    resolver = GeneResolver.from_paths({"human": path, "zebrafish": tmp_path / "nope.csv"})

    assert resolver.resolve("tnfsf2", Species.HUMAN, {"TNF"}) == "TNF"
    assert resolver.title("CD4", Species.HUMAN) == "CD4"
    assert resolver.table(Species.OTHER) is None


def test_normalise_case():
    assert normalise_case("tnf", Species.HUMAN) == "TNF"
    assert normalise_case("CD4", Species.MOUSE) == "Cd4"
    assert normalise_case("h2-ab1", Species.MOUSE) == "H2-Ab1"
    assert normalise_case("cD4", Species.OTHER) == "cD4"
