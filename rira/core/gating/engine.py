"""GatingEngine - orchestrates a full gating run.

Chooses the models to run (explicit list, named preset, or every generic
model of the model database), runs them with consensus aggregation,
attaches the result to the AnnData, and optionally writes summaries and
figures.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence
import logging
import time

try:
    import scanpy as sc
except ImportError:
    sc = None

from rira.config.presets import GatePreset, get_preset
from rira.errors import ConfigurationError

from .config import ConsensusParams, GatingParams, RunConfig
from .registry import GateRegistry
from .runner import GateRunResult, run_gates_for_models

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDED_MODELS = ("Male", "Female")


@dataclass
class ModelPlan:
    """Models to run and how to combine them.

    Attributes
    ----------
    models : List[str]
        Models to run, in order
    consensus : ConsensusParams
        Consensus models, rename map and ambiguity policy
    source : str
        Where the model list came from ("models", "preset:<name>", "database")
    """

    models: List[str] = field(default_factory=list)
    consensus: ConsensusParams = field(default_factory=ConsensusParams)
    source: str = "models"


def default_model_names(
    registry: GateRegistry,
    excluded_models: Optional[Sequence[str]] = DEFAULT_EXCLUDED_MODELS,
) -> List[str]:
    """Every generic model in the model database minus ``excluded_models``.

    Raises
    ------
    ConfigurationError
        If no model database is configured
    """
    names = registry.list_database_models()
    excluded = set(excluded_models or ())
    return [name for name in names if name not in excluded]


def _merge_consensus(preset: GatePreset, overrides: ConsensusParams) -> ConsensusParams:
    # Values set in the run config win over the preset's
    return ConsensusParams(
        consensus_models=(
            overrides.consensus_models
            if overrides.consensus_models is not None
            else preset.consensus_models
        ),
        label_rename=(
            overrides.label_rename
            if overrides.label_rename is not None
            else dict(preset.label_rename)
        ),
        drop_ambiguous=overrides.drop_ambiguous,
    )


class GatingEngine:
    """Engine for multi-model gating and consensus labeling.

    Model selection, in order of precedence:
    1. ``config.models`` if non-empty
    2. ``config.preset`` (models, consensus models and rename map)
    3. Every generic model in the model database, minus
       ``config.excluded_models``

    Parameters
    ----------
    config : RunConfig, optional
        Run configuration (defaults if None)
    registry : GateRegistry, optional
        Gate registry. Built from ``config.model_db_dir`` if None.
    logger : logging.Logger, optional
        Logger instance
    """

    def __init__(
        self,
        config: Optional[RunConfig] = None,
        registry: Optional[GateRegistry] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or RunConfig()
        self.registry = registry or GateRegistry(model_db_dir=self.config.model_db_dir)
        self.logger = logger or logging.getLogger(__name__)

    def plan(self) -> ModelPlan:
        """Decide which models run and how they are combined.

        Raises
        ------
        ConfigurationError
            For an unknown preset or a missing model database
        """
        config = self.config

        if config.models:
            return ModelPlan(
                models=list(config.models),
                consensus=config.consensus,
                source="models",
            )

        if config.preset:
            preset = get_preset(config.preset)
            return ModelPlan(
                models=list(preset.models),
                consensus=_merge_consensus(preset, config.consensus),
                source=f"preset:{preset.name}",
            )

        return ModelPlan(
            models=default_model_names(self.registry, config.excluded_models),
            consensus=config.consensus,
            source="database",
        )

    def execute(
        self,
        adata: "sc.AnnData",
        output_dir: Optional[Path] = None,
        plot: bool = True,
    ) -> GateRunResult:
        """Run gating and attach the results to ``adata.obs``.

        Parameters
        ----------
        adata : sc.AnnData
            AnnData with genes as var_names. Modified in place.
        output_dir : Path, optional
            Where summaries and figures are written (defaults to
            ``config.output_dir``; nothing is written if both are None)
        plot : bool
            Whether to write figures

        Returns
        -------
        GateRunResult
        """
        start_time = time.time()
        plan = self.plan()

        self.logger.info("Model source: %s (%d models)", plan.source, len(plan.models))
        if not plan.models:
            raise ConfigurationError("No gate models to run")

        result = run_gates_for_models(
            adata,
            plan.models,
            params=self.config.params,
            consensus_models=plan.consensus.consensus_models,
            label_rename=plan.consensus.label_rename,
            drop_ambiguous=plan.consensus.drop_ambiguous,
            registry=self.registry,
            logger=self.logger,
        )
        result.attach(adata)

        output_dir = output_dir or self.config.output_dir
        if output_dir is not None:
            self.write_outputs(adata, result, Path(output_dir), plot=plot, source=plan.source)

        self.logger.info("Gating finished in %.1fs", time.time() - start_time)
        return result

    def write_outputs(
        self,
        adata: "sc.AnnData",
        result: GateRunResult,
        output_dir: Path,
        plot: bool = True,
        source: Optional[str] = None,
    ) -> Dict[str, Path]:
        """Write summary tables, the run config and (optionally) figures."""
        from .export import export_all

        output_dir = Path(output_dir)
        paths = export_all(
            result,
            output_dir,
            extra={"model_source": source} if source else None,
            logger=self.logger,
        )
        config_path = output_dir / "run_config.yaml"
        self.config.to_yaml(config_path)
        paths["run_config"] = config_path

        if plot:
            from rira.viz import generate_all_figures

            figures = generate_all_figures(
                adata,
                output_dir,
                summary=result.summary(),
                logger=self.logger,
            )
            paths.update({f"figures/{name}": path for name, path in figures.items()})

        return paths


def run_gates_for_preset(
    adata: "sc.AnnData",
    preset: str = "rhesus",
    params: Optional[GatingParams] = None,
    drop_ambiguous: bool = False,
    registry: Optional[GateRegistry] = None,
    logger: Optional[logging.Logger] = None,
) -> GateRunResult:
    """Run a named preset's models and attach the consensus to ``adata``.

    The ``rhesus`` preset runs every rhesus macaque model, builds the
    consensus from all but PlasmaCell.RM and NeutrophilLineage.RM, and
    collapses model names to lineage labels (Bcell, T_NK, Myeloid,
    Epithelial, Stromal, Erythrocyte, Platelet).

    Args:
        adata: AnnData with genes as var_names (modified in place)
        preset: Preset name or alias
        params: Gating parameters
        drop_ambiguous: Set multi-label consensus values to undefined
        registry: Gate registry
        logger: Logger instance

    Returns:
        GateRunResult

    Raises:
        ConfigurationError: For an unknown preset or gate model
    """
    config = RunConfig(
        params=params or GatingParams(),
        consensus=ConsensusParams(drop_ambiguous=drop_ambiguous),
        preset=preset,
    )
    return GatingEngine(config, registry=registry, logger=logger).execute(adata)


def run_gates_with_default_models(
    adata: "sc.AnnData",
    params: Optional[GatingParams] = None,
    label_rename: Optional[Mapping[str, Optional[str]]] = None,
    drop_ambiguous: bool = False,
    excluded_models: Optional[Sequence[str]] = DEFAULT_EXCLUDED_MODELS,
    model_db_dir: Optional[Path] = None,
    registry: Optional[GateRegistry] = None,
    logger: Optional[logging.Logger] = None,
) -> GateRunResult:
    """Run every generic model of the model database and attach the consensus.

    Args:
        adata: AnnData with genes as var_names (modified in place)
        params: Gating parameters
        label_rename: Model name -> final label
        drop_ambiguous: Set multi-label consensus values to undefined
        excluded_models: Database models to skip
        model_db_dir: Model database directory (default: ``$RIRA_MODEL_DB``)
        registry: Gate registry (overrides ``model_db_dir``)
        logger: Logger instance

    Returns:
        GateRunResult

    Raises:
        ConfigurationError: If no model database is available
    """
    config = RunConfig(
        params=params or GatingParams(),
        consensus=ConsensusParams(
            label_rename=dict(label_rename) if label_rename else None,
            drop_ambiguous=drop_ambiguous,
        ),
        excluded_models=list(excluded_models or []),
        model_db_dir=str(model_db_dir) if model_db_dir else None,
    )
    return GatingEngine(config, registry=registry, logger=logger).execute(adata)
