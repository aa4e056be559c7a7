"""Unit tests for the gate model runner."""

import logging

import numpy as np
import pandas as pd
import pytest

from rira.core.consensus import CONSENSUS_COL, RAW_COL, aggregate_consensus
from rira.core.gating import (
    IMPURE,
    PURE,
    ConsensusParams,
    GateLevel,
    GateResult,
    GateRunResult,
    GateModel,
    GatingParams,
    Signature,
    run_gate,
    run_gates_for_models,
    run_gates_with_params,
)
from rira.errors import ConfigurationError


def _population_mask(adata, population):
    return (adata.obs["population"] == population).to_numpy()


class TestRunGate:
    """Tests for run_gate on a single model."""

    def test_tcell_model(self, gating_adata, gating_params):
        """Only T cells pass every level of Tcell.RM."""
        result = run_gate(gating_adata, "Tcell.RM", params=gating_params)

        assert result.model == "Tcell.RM"
        assert result.purity.index.equals(gating_adata.obs_names)
        assert list(result.purity.cat.categories) == [PURE, IMPURE]
        np.testing.assert_array_equal(
            result.is_pure.to_numpy(), _population_mask(gating_adata, "Tcell")
        )
        assert result.n_pure == 60
        assert result.stopped_at is None

    def test_negative_only_level(self, gating_adata, gating_params):
        """Epithelial.RM level2 has only negative signatures."""
        result = run_gate(gating_adata, "Epithelial.RM", params=gating_params)
        np.testing.assert_array_equal(
            result.is_pure.to_numpy(), _population_mask(gating_adata, "Epithelial")
        )

    def test_level_columns(self, gating_adata, gating_params):
        result = run_gate(gating_adata, "Tcell.RM", params=gating_params, output_col="T")
        assert list(result.levels.columns) == ["T.level1", "T.level2", "T.level3"]

        level1 = result.levels["T.level1"]
        assert level1.notna().all()
        # Non-immune cells are not evaluated after level 1
        non_immune = ~gating_adata.obs["population"].isin(["Tcell", "Bcell", "Myeloid"]).to_numpy()
        assert (level1[non_immune] == IMPURE).all()
        assert result.levels["T.level2"][non_immune].isna().all()

    def test_scores_nan_where_not_scored(self, gating_adata, gating_params):
        result = run_gate(gating_adata, "Tcell.RM", params=gating_params)
        assert {"Immune_UCell", "Lymphoid_UCell", "Tcell_UCell", "NK_UCell"} <= set(result.scores.columns)
        assert result.scores["Immune_UCell"].notna().all()

        epithelial = _population_mask(gating_adata, "Epithelial")
        assert result.scores["Tcell_UCell"][epithelial].isna().all()

    def test_min_cells_stops_descent(self, small_adata, caplog):
        """With too few candidates, remaining candidates stay pure."""
        params = GatingParams(max_rank=50, smooth_k=0, min_cells=15)
        with caplog.at_level(logging.WARNING):
            result = run_gate(small_adata, "Tcell.RM", params=params)

        # 20 immune cells pass level1; 20 lymphoid pass level2 and
        # 20 >= 15 so level3 still runs
        assert result.stopped_at is None

        params = GatingParams(max_rank=50, smooth_k=0, min_cells=25)
        with caplog.at_level(logging.WARNING):
            result = run_gate(small_adata, "Tcell.RM", params=params)
        assert result.stopped_at == "level1"
        assert result.is_pure.all()
        assert "stopping" in caplog.text

    def test_in_memory_model(self, gating_adata, gating_params):
        model = GateModel(
            name="Myeloid.custom",
            levels=(
                GateLevel(
                    "level1",
                    positive=(Signature("Myeloid", ("LYZ", "CD14", "CSF1R")),),
                    negative=(Signature("Tcell", ("CD3D", "CD3E")),),
                ),
            ),
        )
        result = run_gate(gating_adata, model, params=gating_params)
        np.testing.assert_array_equal(
            result.is_pure.to_numpy(), _population_mask(gating_adata, "Myeloid")
        )

    def test_unknown_model(self, gating_adata):
        with pytest.raises(ConfigurationError, match="NotAGate"):
            run_gate(gating_adata, "NotAGate")

    def test_does_not_modify_adata(self, gating_adata, gating_params):
        obs_before = gating_adata.obs.copy()
        run_gate(gating_adata, "Bcell.RM", params=gating_params)
        pd.testing.assert_frame_equal(gating_adata.obs, obs_before)


class TestRunGatesForModels:
    """Tests for multi-model runs with consensus."""

    MODELS = ["Tcell.RM", "NK.RM", "Bcell.RM", "Myeloid.RM"]

    def test_consensus(self, gating_adata, gating_params):
        result = run_gates_for_models(gating_adata, self.MODELS, params=gating_params)
        raw = result.consensus.raw_labels()
        pops = gating_adata.obs["population"].astype(str)

        assert (raw[pops == "Tcell"] == "Tcell.RM").all()
        assert (raw[pops == "Bcell"] == "Bcell.RM").all()
        assert (raw[pops == "Myeloid"] == "Myeloid.RM").all()
        assert raw[pops.isin(["Epithelial", "Stromal"])].isna().all()
        assert result.models == self.MODELS

    def test_rename(self, gating_adata, gating_params):
        result = run_gates_for_models(
            gating_adata,
            self.MODELS,
            params=gating_params,
            label_rename={"Tcell.RM": "T_NK", "NK.RM": "T_NK", "Bcell.RM": "Bcell"},
        )
        final = result.consensus.final_labels()
        pops = gating_adata.obs["population"].astype(str)
        assert (final[pops == "Tcell"] == "T_NK").all()
        assert (final[pops == "Bcell"] == "Bcell").all()
        assert (final[pops == "Myeloid"] == "Myeloid.RM").all()

    def test_consensus_models_subset(self, gating_adata, gating_params):
        result = run_gates_for_models(
            gating_adata,
            self.MODELS,
            params=gating_params,
            consensus_models=["Tcell.RM", "Bcell.RM"],
        )
        pops = gating_adata.obs["population"].astype(str)
        assert result.consensus.final_labels()[pops == "Myeloid"].isna().all()
        # Models outside the consensus still produce calls
        assert result.gate_results["Myeloid.RM"].n_pure == 60

    def test_unknown_model_fails_before_running(self, gating_adata, caplog):
        with caplog.at_level(logging.INFO):
            with pytest.raises(ConfigurationError, match="Nope1, Nope2"):
                run_gates_for_models(gating_adata, ["Tcell.RM", "Nope1", "Nope2"])
        assert "Running model" not in caplog.text

    def test_unknown_consensus_model(self, gating_adata):
        with pytest.raises(ConfigurationError, match="Bcell.RM"):
            run_gates_for_models(gating_adata, ["Tcell.RM"], consensus_models=["Bcell.RM"])

    def test_call_columns(self, gating_adata, gating_params):
        result = run_gates_for_models(gating_adata, ["Tcell.RM", "Bcell.RM"], params=gating_params)
        calls = result.call_columns()
        assert list(calls.columns) == ["Tcell.RM.is.pure", "Bcell.RM.is.pure"]
        pops = gating_adata.obs["population"].astype(str)
        assert (calls["Tcell.RM.is.pure"][pops == "Tcell"] == "Tcell.RM").all()
        assert calls["Tcell.RM.is.pure"][pops != "Tcell"].isna().all()

    def test_summary(self, gating_adata, gating_params):
        result = run_gates_for_models(
            gating_adata, self.MODELS, params=gating_params, consensus_models=["Tcell.RM"]
        )
        summary = result.summary().set_index("model")
        assert summary.loc["Bcell.RM", "n_pure"] == 60
        assert summary.loc["NK.RM", "n_pure"] == 0
        assert bool(summary.loc["Tcell.RM", "in_consensus"])
        assert not bool(summary.loc["Bcell.RM", "in_consensus"])

    def test_with_params_bundle(self, gating_adata, gating_params):
        result = run_gates_with_params(
            gating_adata,
            ["Tcell.RM", "NK.RM"],
            params=gating_params,
            consensus=ConsensusParams(label_rename={"Tcell.RM": "T_NK", "NK.RM": "T_NK"}),
        )
        pops = gating_adata.obs["population"].astype(str)
        assert (result.consensus.final_labels()[pops == "Tcell"] == "T_NK").all()


class TestAttach:
    """Tests for GateRunResult.attach."""

    def test_attach_columns(self, gating_adata, gating_params):
        result = run_gates_for_models(
            gating_adata, ["Tcell.RM", "Bcell.RM"], params=gating_params
        )
        # Nothing is written until attach
        assert RAW_COL not in gating_adata.obs

        result.attach(gating_adata)
        obs = gating_adata.obs
        for col in ("Tcell.RM.is.pure", "Bcell.RM.is.pure", RAW_COL, CONSENSUS_COL, "Tcell_UCell"):
            assert col in obs.columns
        assert obs[CONSENSUS_COL].cat.ordered
        assert not any(".level" in col for col in obs.columns)

    def test_attach_keep_levels(self, gating_adata):
        params = GatingParams(max_rank=50, smooth_k=0, keep_levels=True)
        result = run_gates_for_models(gating_adata, ["Tcell.RM"], params=params)
        result.attach(gating_adata)
        level_cols = [c for c in gating_adata.obs.columns if ".level" in c]
        assert level_cols == [
            "Tcell.RM.is.pure.level1",
            "Tcell.RM.is.pure.level2",
            "Tcell.RM.is.pure.level3",
        ]

    def test_attach_overwrites(self, gating_adata, gating_params):
        gating_adata.obs[CONSENSUS_COL] = "stale"
        run_gates_for_models(gating_adata, ["Tcell.RM"], params=gating_params).attach(gating_adata)
        assert "stale" not in set(gating_adata.obs[CONSENSUS_COL].dropna())

    def test_attach_cell_mismatch(self, gating_adata, gating_params):
        result = run_gates_for_models(gating_adata, ["Tcell.RM"], params=gating_params)
        with pytest.raises(ValueError, match="do not match"):
            result.attach(gating_adata[:10].copy())

    def test_shared_signature_last_model_wins(self):
        index = pd.Index(["c0", "c1", "c2"])
        purity = pd.Series(pd.Categorical([PURE] * 3, categories=[PURE, IMPURE]), index=index)

        def gate_result(model, scores):
            return GateResult(
                model=model,
                purity=purity,
                levels=pd.DataFrame(index=index),
                scores=pd.DataFrame({"Immune_UCell": scores}, index=index),
            )

        first = gate_result("first", [0.1, 0.2, 0.3])
        second = gate_result("second", [0.9, np.nan, 0.7])
        calls = pd.DataFrame({"first": first.is_pure, "second": second.is_pure})
        result = GateRunResult(
            gate_results={"first": first, "second": second},
            consensus=aggregate_consensus(calls),
        )

        scores = result.score_columns()["Immune_UCell"]
        assert scores.tolist() == [0.9, 0.2, 0.7]
