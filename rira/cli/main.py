"""Command-line interface for RIRA.

Provides CLI commands for listing gate models and presets and for running
multi-model gating on ``.h5ad`` files.
"""

import logging
from pathlib import Path
from typing import Dict, Optional, Tuple

import click

from rira import __version__
from rira.errors import ConfigurationError


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("rira")


def _parse_rename(pairs: Tuple[str, ...]) -> Optional[Dict[str, Optional[str]]]:
    if not pairs:
        return None
    mapping: Dict[str, Optional[str]] = {}
    for pair in pairs:
        if "=" not in pair:
            raise click.BadParameter(f"Expected MODEL=LABEL, got '{pair}'", param_hint="--rename")
        key, value = pair.split("=", 1)
        # An empty label drops the model from the consensus
        mapping[key.strip()] = value.strip() or None
    return mapping


@click.group()
@click.version_option(version=__version__, prog_name="rira")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """RIRA: cell-type gating and consensus labeling for rhesus macaque scRNA-seq.

    Examples:

        # List packaged gate models
        rira list-gates

        # Run the rhesus preset
        rira run --input pbmc.h5ad --out gated/ --preset rhesus

        # Run explicit models with a rename map
        rira run -i pbmc.h5ad -o gated/ -m Tcell.RM -m NK.RM --rename NK.RM=T_NK

        # Run from a YAML config
        rira run -i pbmc.h5ad -o gated/ --config gating.yaml
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command("list-gates")
@click.option("--model-db", type=click.Path(), default=None,
              help="Also list generic models from this model database")
def list_gates(model_db: Optional[str]) -> None:
    """List available gate models."""
    from rira.core.gating import GateRegistry

    registry = GateRegistry(model_db_dir=model_db)
    for name in registry.list_local():
        click.echo(name)

    if model_db:
        try:
            names = registry.list_database_models()
        except ConfigurationError as e:
            raise click.ClickException(str(e))
        for name in names:
            click.echo(f"{name}\t(model database)")


@cli.command("list-presets")
def list_presets_cmd() -> None:
    """List named model presets."""
    from rira.config import get_preset, list_presets

    for name in list_presets():
        preset = get_preset(name)
        click.echo(f"{name}\t{len(preset.models)} models\t{preset.description}")


@cli.command("show-gate")
@click.argument("name")
@click.option("--model-db", type=click.Path(), default=None, help="Model database directory")
def show_gate(name: str, model_db: Optional[str]) -> None:
    """Print the levels and signatures of a gate model."""
    from rira.core.gating import GateRegistry

    try:
        model = GateRegistry(model_db_dir=model_db).get(name)
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    click.echo(f"{model.name} ({model.source})")
    for level in model.levels:
        click.echo(f"  {level.name}")
        for use_as, signatures in (("positive", level.positive), ("negative", level.negative)):
            for sig in signatures:
                genes = list(sig.positive_genes) + [f"{g}-" for g in sig.negative_genes]
                click.echo(f"    {use_as:<8} {sig.name}: {','.join(genes)}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Input AnnData file (.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Run configuration file (YAML)")
@click.option("--preset", "-p", default=None, help="Named model preset (e.g. rhesus)")
@click.option("--model", "-m", "models", multiple=True, help="Gate model to run (repeatable)")
@click.option("--consensus-model", "consensus_models", multiple=True,
              help="Model considered for the consensus (repeatable; default: all)")
@click.option("--rename", multiple=True, help="MODEL=LABEL consensus rename (repeatable)")
@click.option("--drop-ambiguous/--keep-ambiguous", default=None,
              help="Set multi-label consensus values to undefined")
@click.option("--model-db", type=click.Path(), default=None, help="Model database directory")
@click.option("--layer", default=None, help="Expression layer to score (default: X)")
@click.option("--min-cells", type=int, default=None, help="Minimum cells to continue gating")
@click.option("--pos-thr", type=float, default=None, help="Positive signature threshold")
@click.option("--neg-thr", type=float, default=None, help="Negative signature threshold")
@click.option("--smooth-k", type=int, default=None, help="kNN smoothing neighbours (0 disables)")
@click.option("--plots/--no-plots", default=True, help="Write figures")
@click.pass_context
def run(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    preset: Optional[str],
    models: Tuple[str, ...],
    consensus_models: Tuple[str, ...],
    rename: Tuple[str, ...],
    drop_ambiguous: Optional[bool],
    model_db: Optional[str],
    layer: Optional[str],
    min_cells: Optional[int],
    pos_thr: Optional[float],
    neg_thr: Optional[float],
    smooth_k: Optional[int],
    plots: bool,
) -> None:
    """Run gate models and write the consensus-labeled AnnData.

    Models come from --model, else --preset, else the config file, else
    every generic model of the model database. Command-line options
    override config values.
    """
    logger = ctx.obj["logger"]

    # Import here to avoid slow startup
    import scanpy as sc

    from rira.core.gating import GatingEngine, RunConfig, build_run_summary
    from rira.io import get_logger, log_yaml

    try:
        cfg = RunConfig.from_yaml(Path(config)) if config else RunConfig()
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    if models:
        cfg.models = list(models)
        cfg.preset = None
    elif preset:
        cfg.preset = preset
        cfg.models = []
    if consensus_models:
        cfg.consensus.consensus_models = list(consensus_models)
    label_rename = _parse_rename(rename)
    if label_rename is not None:
        cfg.consensus.label_rename = label_rename
    if drop_ambiguous is not None:
        cfg.consensus.drop_ambiguous = drop_ambiguous
    if model_db:
        cfg.model_db_dir = model_db
    for key, value in (
        ("layer", layer),
        ("min_cells", min_cells),
        ("pos_thr", pos_thr),
        ("neg_thr", neg_thr),
        ("smooth_k", smooth_k),
    ):
        if value is not None:
            setattr(cfg.params, key, value)

    out_dir = Path(output_path)
    out_dir.mkdir(parents=True, exist_ok=True)
    cfg.output_dir = str(out_dir)

    run_logger, log_path = get_logger("rira.run", out_dir / "logs", console=True)
    logger.info("Logging to %s", log_path)

    logger.info("Loading %s", input_path)
    adata = sc.read_h5ad(input_path)

    try:
        result = GatingEngine(cfg, logger=run_logger).execute(adata, plot=plots)
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    output_file = out_dir / "gated.h5ad"
    adata.write_h5ad(output_file)
    log_yaml(log_path, build_run_summary(result, {"input": str(input_path), "output": str(output_file)}))

    n_labeled = int(result.consensus.final.map(bool).sum())
    click.echo(f"Gating complete: {len(result.models)} models, "
               f"{n_labeled:,}/{adata.n_obs:,} cells labeled")
    click.echo(f"Output saved to: {output_file}")


@cli.command("celltypist")
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Input AnnData file (.h5ad), log1p-normalized to 10,000 counts")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--model", "-m", "model", default=None,
              help="Model file, RIRA model name or CellTypist built-in model")
@click.option("--model-dir", type=click.Path(), default=None,
              help="RIRA model directory (default: $RIRA_CELLTYPIST_DIR)")
@click.option("--prefix", "column_prefix", default="", help="Prefix for obs columns")
@click.option("--majority-voting/--no-majority-voting", default=True,
              help="Refine calls by majority voting within over-clusters")
@click.option("--over-clustering", default=None, help="obs column used as over-clustering")
@click.option("--max-batch-size", type=int, default=None, help="Annotate in batches of this size")
@click.option("--layer", default=None, help="Expression layer (default: X)")
@click.option("--probabilities", is_flag=True, help="Also write per-class probability columns")
@click.option("--download", is_flag=True, help="Download a missing built-in model")
@click.pass_context
def celltypist_cmd(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    model: Optional[str],
    model_dir: Optional[str],
    column_prefix: str,
    majority_voting: bool,
    over_clustering: Optional[str],
    max_batch_size: Optional[int],
    layer: Optional[str],
    probabilities: bool,
    download: bool,
) -> None:
    """Annotate cells with a CellTypist model."""
    logger = ctx.obj["logger"]

    import scanpy as sc

    from rira.core.celltypist import DEFAULT_MODEL, CellTypistParams, run_celltypist
    from rira.io import write_dataframe

    try:
        params = CellTypistParams(
            model=model or DEFAULT_MODEL,
            column_prefix=column_prefix,
            majority_voting=majority_voting,
            over_clustering=over_clustering,
            max_batch_size=max_batch_size,
            layer=layer,
            retain_probability_matrix=probabilities,
        )
    except ConfigurationError as e:
        raise click.ClickException(str(e))

    logger.info("Loading %s", input_path)
    adata = sc.read_h5ad(input_path)

    try:
        result = run_celltypist(adata, params, model_dir=model_dir, download=download, logger=logger)
    except ConfigurationError as e:
        raise click.ClickException(str(e))
    result.attach(adata)

    out_dir = Path(output_path)
    out_dir.mkdir(parents=True, exist_ok=True)
    output_file = out_dir / "celltypist.h5ad"
    adata.write_h5ad(output_file)
    write_dataframe(result.to_frame(), out_dir / "celltypist_calls.csv", index=True)

    n_called = int(result.cellclass().notna().sum())
    click.echo(f"CellTypist complete: {n_called:,}/{adata.n_obs:,} cells called")
    click.echo(f"Output saved to: {output_file}")


@cli.command("train-celltypist")
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Labeled AnnData file (.h5ad), log1p-normalized to 10,000 counts")
@click.option("--label-col", "-l", required=True, help="obs column with training labels")
@click.option("--out", "-o", "output_file", required=True, type=click.Path(),
              help="Output model file (.pkl)")
@click.option("--min-cells-per-class", type=int, default=20, help="Drop smaller classes")
@click.option("--exclude-class", "excluded_classes", multiple=True,
              help="Class never trained on (repeatable)")
@click.option("--exclude-gene", "excluded_genes", multiple=True,
              help="Gene removed before training (repeatable)")
@click.option("--feature-selection", is_flag=True, help="Two-pass training on top genes")
@click.option("--use-sgd", is_flag=True, help="Stochastic gradient descent")
@click.option("--mini-batch", is_flag=True, help="Mini-batch SGD")
@click.pass_context
def train_celltypist_cmd(
    ctx: click.Context,
    input_path: str,
    label_col: str,
    output_file: str,
    min_cells_per_class: int,
    excluded_classes: Tuple[str, ...],
    excluded_genes: Tuple[str, ...],
    feature_selection: bool,
    use_sgd: bool,
    mini_batch: bool,
) -> None:
    """Train a CellTypist model on labeled cells."""
    logger = ctx.obj["logger"]

    import scanpy as sc

    from rira.core.celltypist import TrainingParams, train_celltypist

    params = TrainingParams(
        min_cells_per_class=min_cells_per_class,
        excluded_classes=list(excluded_classes),
        feature_exclusion_list=list(excluded_genes),
        feature_selection=feature_selection,
        use_sgd=use_sgd,
        mini_batch=mini_batch,
    )

    logger.info("Loading %s", input_path)
    adata = sc.read_h5ad(input_path)

    try:
        path = train_celltypist(adata, label_col, output_file, params, logger=logger)
    except ConfigurationError as e:
        raise click.ClickException(str(e))
    click.echo(f"Model saved to: {path}")


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
