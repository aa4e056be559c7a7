"""Unit tests for gate table parsing."""

import pytest

from rira.core.gating import (
    GateLevel,
    GateModel,
    Signature,
    load_gate_model,
    load_master_table,
    parse_signature,
)
from rira.errors import ConfigurationError


class TestParseSignature:
    """Tests for parse_signature."""

    def test_positive_genes(self):
        sig = parse_signature("Tcell", "CD3D, CD3E,CD3G")
        assert sig.positive_genes == ("CD3D", "CD3E", "CD3G")
        assert sig.negative_genes == ()

    def test_negative_genes(self):
        """A trailing '-' marks a negative gene."""
        sig = parse_signature("NK", "NKG7,GNLY,CD3D-,CD3E-")
        assert sig.positive_genes == ("NKG7", "GNLY")
        assert sig.negative_genes == ("CD3D", "CD3E")

    def test_duplicates_dropped(self):
        sig = parse_signature("X", "A,B,A,,B")
        assert sig.positive_genes == ("A", "B")

    def test_empty_signature(self):
        with pytest.raises(ConfigurationError, match="no genes"):
            parse_signature("Empty", " , ")

    def test_score_column(self):
        assert parse_signature("Tcell", "CD3D").score_column == "Tcell_UCell"


class TestMasterTable:
    """Tests for load_master_table."""

    def test_load(self, gate_dir):
        master = load_master_table(gate_dir / "master_table.tsv")
        assert master["Tcell"] == "CD3D,CD3E"
        assert set(master) == {"Immune", "Tcell", "Bcell"}

    def test_missing_file(self, tmp_path):
        assert load_master_table(tmp_path / "missing.tsv") == {}
        assert load_master_table(None) == {}

    def test_missing_columns(self, tmp_path):
        path = tmp_path / "master_table.tsv"
        path.write_text("name\tgenes\nImmune\tPTPRC\n")
        with pytest.raises(ConfigurationError, match="signature"):
            load_master_table(path)


class TestLoadGateModel:
    """Tests for load_gate_model."""

    def test_blank_signature_uses_master_table(self, gate_dir):
        master = load_master_table(gate_dir / "master_table.tsv")
        model = load_gate_model(gate_dir / "Tcell.test.tsv", master)

        assert model.name == "Tcell.test"
        assert [level.name for level in model.levels] == ["level1", "level2"]
        assert model.levels[0].positive[0].positive_genes == ("PTPRC",)
        assert model.levels[1].positive[0].positive_genes == ("CD3D", "CD3E")
        assert model.levels[1].negative[0].name == "Bcell"

    def test_signature_naming_master_entry(self, gate_dir):
        """A signature that names a master table entry is resolved."""
        master = load_master_table(gate_dir / "master_table.tsv")
        model = load_gate_model(gate_dir / "Bcell.test.tsv", master)
        negative = model.levels[1].negative[0]
        assert negative.name == "Tcell"
        assert negative.positive_genes == ("CD3D", "CD3E")

    def test_levels_sorted(self, gate_dir):
        """Rows may list levels out of order."""
        master = load_master_table(gate_dir / "master_table.tsv")
        model = load_gate_model(gate_dir / "Bcell.test.tsv", master)
        assert [level.name for level in model.levels] == ["level1", "level2"]
        assert model.levels[1].positive[0].positive_genes == ("MS4A1", "CD79A", "CD19")

    def test_level_numeric_order(self, tmp_path):
        path = tmp_path / "Deep.tsv"
        rows = ["levels\tuse_as\tname\tsignature"]
        rows += [f"level{i}\tpositive\tS{i}\tG{i}" for i in (10, 2, 1)]
        path.write_text("\n".join(rows) + "\n")
        model = load_gate_model(path)
        assert [level.name for level in model.levels] == ["level1", "level2", "level10"]

    def test_unresolved_blank_signature(self, gate_dir):
        with pytest.raises(ConfigurationError, match="Immune"):
            load_gate_model(gate_dir / "Tcell.test.tsv", master_table={})

    def test_invalid_use_as(self, tmp_path):
        path = tmp_path / "Bad.tsv"
        path.write_text("levels\tuse_as\tname\tsignature\nlevel1\tmaybe\tX\tA\n")
        with pytest.raises(ConfigurationError, match="use_as"):
            load_gate_model(path)

    def test_missing_columns(self, tmp_path):
        path = tmp_path / "Bad.tsv"
        path.write_text("levels\tname\tsignature\nlevel1\tX\tA\n")
        with pytest.raises(ConfigurationError, match="use_as"):
            load_gate_model(path)

    def test_empty_table(self, tmp_path):
        path = tmp_path / "Empty.tsv"
        path.write_text("levels\tuse_as\tname\tsignature\n")
        with pytest.raises(ConfigurationError, match="no rows"):
            load_gate_model(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_gate_model(tmp_path / "missing.tsv")

    def test_distinct_signatures(self):
        tcell = Signature("Tcell", ("CD3D",))
        immune = Signature("Immune", ("PTPRC",))
        model = GateModel(
            name="M",
            levels=(
                GateLevel("level1", positive=(immune,)),
                GateLevel("level2", positive=(tcell,), negative=(immune,)),
            ),
        )
        assert [s.name for s in model.signatures] == ["Immune", "Tcell"]


class TestPackagedGates:
    """Every packaged gate parses against the packaged master table."""

    def test_all_packaged_gates_load(self):
        from rira.core.gating import DEFAULT_GATE_DIR, list_available_gates

        master = load_master_table(DEFAULT_GATE_DIR / "master_table.tsv")
        names = list_available_gates()
        assert len(names) == 18
        for name in names:
            model = load_gate_model(DEFAULT_GATE_DIR / f"{name}.tsv", master)
            assert model.levels
            assert model.name == name
