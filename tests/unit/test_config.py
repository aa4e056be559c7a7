"""Unit tests for run configuration and presets."""

import pytest
import yaml

from rira.config import GatePreset, get_preset, list_presets, register_preset
from rira.config import presets as preset_module
from rira.core.gating import ConsensusParams, GatingParams, RunConfig
from rira.errors import ConfigurationError


class TestGatingParams:
    """Tests for GatingParams dataclass."""

    def test_default_values(self):
        params = GatingParams()
        assert params.min_cells == 30
        assert params.pos_thr == 0.13
        assert params.neg_thr == 0.13
        assert params.max_rank == 1500
        assert params.layer is None
        assert params.genes_blacklist == "default"
        assert params.keep_levels is False

    def test_from_dict(self):
        params = GatingParams.from_dict({"pos_thr": 0.2, "smooth_k": 0})
        assert params.pos_thr == 0.2
        assert params.smooth_k == 0
        assert params.neg_thr == 0.13

    def test_from_dict_unknown_key(self):
        with pytest.raises(ConfigurationError, match="pos_threshold"):
            GatingParams.from_dict({"pos_threshold": 0.2})


class TestRunConfig:
    """Tests for RunConfig YAML loading."""

    def test_default_values(self):
        config = RunConfig()
        assert config.excluded_models == ["Male", "Female"]
        assert config.preset is None
        assert config.consensus.drop_ambiguous is False

    def test_from_yaml(self, sample_run_config):
        config = RunConfig.from_yaml(sample_run_config)
        assert config.params.max_rank == 50
        assert config.consensus.drop_ambiguous is True
        assert config.consensus.label_rename == {"Tcell.RM": "T_NK", "NK.RM": "T_NK"}
        assert config.models == ["Tcell.RM", "NK.RM", "Bcell.RM"]

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert RunConfig.from_yaml(path) == RunConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            RunConfig.from_yaml(tmp_path / "missing.yaml")

    def test_unknown_top_level_key(self, tmp_path):
        path = tmp_path / "typo.yaml"
        path.write_text("modles:\n  - Tcell.RM\n")
        with pytest.raises(ConfigurationError, match="modles"):
            RunConfig.from_yaml(path)

    def test_unknown_consensus_key(self, tmp_path):
        path = tmp_path / "typo.yaml"
        path.write_text("consensus:\n  drop_ambigous: true\n")
        with pytest.raises(ConfigurationError, match="drop_ambigous"):
            RunConfig.from_yaml(path)

    @pytest.mark.parametrize("text,expected", [
        ("'false'", False),
        ("'yes'", True),
        ("false", False),
        ("true", True),
    ])
    def test_drop_ambiguous_values(self, tmp_path, text, expected):
        path = tmp_path / "config.yaml"
        path.write_text(f"consensus:\n  drop_ambiguous: {text}\n")
        assert RunConfig.from_yaml(path).consensus.drop_ambiguous is expected

    def test_drop_ambiguous_invalid(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("consensus:\n  drop_ambiguous: sometimes\n")
        with pytest.raises(ConfigurationError, match="drop_ambiguous"):
            RunConfig.from_yaml(path)

    def test_roundtrip(self, tmp_path):
        config = RunConfig(
            params=GatingParams(pos_thr=0.3),
            consensus=ConsensusParams(consensus_models=["A"], drop_ambiguous=True),
            preset="rhesus",
        )
        path = tmp_path / "out" / "config.yaml"
        config.to_yaml(path)
        assert RunConfig.from_yaml(path) == config


class TestPresets:
    """Tests for the preset registry."""

    def test_builtin_presets(self):
        assert "rhesus" in list_presets()
        assert "rhesus_immune" in list_presets()

    def test_rhesus_preset(self):
        preset = get_preset("rhesus")
        assert len(preset.models) == 18
        assert "PlasmaCell.RM" in preset.models
        assert "PlasmaCell.RM" not in preset.consensus_models
        assert "NeutrophilLineage.RM" not in preset.consensus_models
        assert len(preset.consensus_models) == 16
        assert preset.label_rename["NK.RM"] == "T_NK"
        assert preset.label_rename["Fibroblast.RM"] == "Stromal"
        assert set(preset.label_rename.values()) == {
            "Bcell", "T_NK", "Myeloid", "Epithelial", "Erythrocyte", "Stromal", "Platelet",
        }

    def test_alias(self):
        assert get_preset("RM") is get_preset("rhesus")
        assert get_preset("rhesus-macaque") is get_preset("rhesus")

    def test_unknown_preset(self):
        with pytest.raises(ConfigurationError, match="Unknown preset"):
            get_preset("zebrafish")

    def test_preset_models_exist(self):
        """Every builtin preset names packaged gate models."""
        from rira.core.gating import GateRegistry

        registry = GateRegistry(allow_model_db=False)
        for name in list_presets():
            registry.resolve(get_preset(name).models)

    def test_validate_consensus_subset(self):
        preset = GatePreset(name="bad", models=["A"], consensus_models=["A", "B"])
        with pytest.raises(ConfigurationError, match="B"):
            preset.validate()

    def test_validate_empty(self):
        with pytest.raises(ConfigurationError, match="no models"):
            GatePreset(name="empty").validate()

    def test_validate_ignores_rename_keys(self):
        preset = GatePreset(name="subset", models=["A"], label_rename={"B": "Group"})
        preset.validate()

    def test_register_preset(self, monkeypatch):
        list_presets()
        monkeypatch.setattr(preset_module, "PRESET_REGISTRY", dict(preset_module.PRESET_REGISTRY))
        monkeypatch.setattr(preset_module, "PRESET_ALIASES", dict(preset_module.PRESET_ALIASES))

        register_preset(GatePreset(name="My Gates", models=["Tcell.RM"], aliases=["mine"]))
        assert get_preset("my_gates").models == ["Tcell.RM"]
        assert get_preset("mine").name == "My Gates"

    def test_yaml_roundtrip(self, tmp_path):
        preset = GatePreset(
            name="custom",
            models=["Tcell.RM", "NK.RM"],
            consensus_models=["Tcell.RM"],
            label_rename={"Tcell.RM": "T_NK", "NK.RM": None},
            description="test",
        )
        path = tmp_path / "custom.yaml"
        preset.to_yaml(path)
        loaded = GatePreset.from_yaml(path)
        assert loaded == preset

        with open(path) as f:
            assert yaml.safe_load(f)["label_rename"]["NK.RM"] is None
