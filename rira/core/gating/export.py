"""Export functions for gating outputs.

This module provides functions to export:
- Consensus summary (cells per final label)
- Model summary (pure cells per gate model)
- Rename log (raw consensus value -> final value)
- Ambiguity log (dropped multi-label values)
- Run summary YAML (parameters, models, counts)
"""

from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional
import logging

import pandas as pd
import yaml

from rira.io import write_dataframe

from .runner import GateRunResult

logger = logging.getLogger(__name__)


def export_consensus_summary(result: GateRunResult, output_path: Path) -> pd.DataFrame:
    """Export cell counts per final consensus label.

    Undefined cells are written as an empty label.
    """
    df = result.consensus.summary()
    df["fraction"] = df["fraction"].round(4)
    write_dataframe(df, output_path)
    return df


def export_raw_summary(result: GateRunResult, output_path: Path) -> pd.DataFrame:
    """Export cell counts per raw (pre-rename) consensus value."""
    counts = result.consensus.raw_labels().value_counts(dropna=False, sort=False)
    df = pd.DataFrame({
        "raw_label": [None if pd.isna(k) else str(k) for k in counts.index],
        "n_cells": counts.to_numpy(dtype=int),
    })
    write_dataframe(df, output_path)
    return df


def export_model_summary(result: GateRunResult, output_path: Path) -> pd.DataFrame:
    """Export per-model pure cell counts."""
    df = result.summary()
    df["fraction_pure"] = df["fraction_pure"].round(4)
    write_dataframe(df, output_path)
    return df


def export_rename_log(result: GateRunResult, output_path: Path) -> pd.DataFrame:
    """Export every raw consensus value that was renamed."""
    df = pd.DataFrame(
        list(result.consensus.renamed.items()),
        columns=["raw_label", "final_label"],
    )
    write_dataframe(df, output_path)
    return df


def export_dropped_log(result: GateRunResult, output_path: Path) -> pd.DataFrame:
    """Export ambiguous consensus values set to undefined, with cell counts."""
    df = pd.DataFrame(
        list(result.consensus.dropped.items()),
        columns=["label", "n_cells"],
    )
    write_dataframe(df, output_path)
    return df


def build_run_summary(
    result: GateRunResult,
    extra: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Run summary record: parameters, models and consensus counts."""
    consensus = result.consensus
    n_cells = len(consensus.final)
    n_labeled = int(consensus.final.map(bool).sum())
    record: Dict[str, Any] = {
        "timestamp": datetime.now().isoformat(timespec="seconds"),
        "n_cells": n_cells,
        "n_labeled": n_labeled,
        "n_undefined": n_cells - n_labeled,
        "models": result.models,
        "consensus_models": list(consensus.consensus_models),
        "params": asdict(result.params),
        "n_pure": {name: res.n_pure for name, res in result.gate_results.items()},
        "renamed": dict(consensus.renamed),
        "dropped": dict(consensus.dropped),
    }
    if extra:
        record.update(extra)
    return record


def export_run_summary(
    result: GateRunResult,
    output_path: Path,
    extra: Optional[Dict[str, Any]] = None,
) -> Path:
    """Write the run summary record as YAML."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w") as f:
        yaml.safe_dump(build_run_summary(result, extra), f, sort_keys=False)
    logger.debug("Wrote run summary to %s", output_path)
    return output_path


def export_all(
    result: GateRunResult,
    output_dir: Path,
    extra: Optional[Dict[str, Any]] = None,
    logger: Optional[logging.Logger] = None,
) -> Dict[str, Path]:
    """Write every gating table into ``output_dir``.

    Returns
    -------
    Dict[str, Path]
        Output name -> path
    """
    if logger is None:
        logger = logging.getLogger(__name__)

    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    paths = {
        "consensus_summary": output_dir / "consensus_summary.csv",
        "raw_summary": output_dir / "raw_consensus_summary.csv",
        "model_summary": output_dir / "model_summary.csv",
        "renamed": output_dir / "renamed_labels.csv",
        "dropped": output_dir / "dropped_ambiguous.csv",
    }

    export_consensus_summary(result, paths["consensus_summary"])
    export_raw_summary(result, paths["raw_summary"])
    export_model_summary(result, paths["model_summary"])
    export_rename_log(result, paths["renamed"])
    export_dropped_log(result, paths["dropped"])
    paths["run_summary"] = export_run_summary(result, output_dir / "run_summary.yaml", extra=extra)

    logger.info("Exported %d files to %s", len(paths), output_dir)
    return paths
