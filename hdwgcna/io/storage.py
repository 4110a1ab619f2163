"""Persistence of expensive artifacts.

The TOM is written as a compressed NumPy archive named after the network;
metacells are written as h5ad; tables are written as CSV.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Tuple, Union

import numpy as np
import pandas as pd

from ..errors import ShapeMismatchError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def ensure_output_dir(path: PathLike) -> Path:
    """Create the directory at path if needed and return it."""
    directory = Path(path)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def write_dataframe(df: pd.DataFrame, path: PathLike, *, index: bool = False) -> Path:
    """Write a DataFrame as CSV, creating the parent directory."""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, index=index)
    return output_path


def tom_path(tom_dir: PathLike, network_name: str) -> Path:
    return Path(tom_dir) / f"{network_name}_TOM.npz"


def save_tom(
    tom: np.ndarray,
    genes: List[str],
    tom_dir: PathLike,
    network_name: str,
) -> Path:
    """Write a TOM and its gene names to ``<tom_dir>/<network_name>_TOM.npz``.

    Raises
    ------
    ShapeMismatchError
        If the matrix and gene list disagree in size
    """
    tom = np.asarray(tom)
    if tom.shape != (len(genes), len(genes)):
        raise ShapeMismatchError(
            f"TOM shape {tom.shape} does not match {len(genes)} genes"
        )
    path = tom_path(ensure_output_dir(tom_dir), network_name)
    np.savez_compressed(path, tom=tom, genes=np.asarray(genes, dtype=str))
    logger.debug("Wrote %dx%d TOM to %s", tom.shape[0], tom.shape[1], path)
    return path


def load_tom(tom_dir: PathLike, network_name: str) -> Tuple[np.ndarray, List[str]]:
    """Read a TOM written by ``save_tom``.

    Returns
    -------
    Tuple[np.ndarray, List[str]]
        The matrix and its gene names
    """
    path = tom_path(tom_dir, network_name)
    if not path.exists():
        raise FileNotFoundError(f"TOM not found: {path}")
    with np.load(path, allow_pickle=False) as data:
        return data["tom"], [str(g) for g in data["genes"]]


def save_metacells(adata: Any, path: PathLike) -> Path:
    """Write a metacell AnnData as h5ad.

    The membership map is stored as a two-column table in ``uns`` because
    h5ad cannot hold ragged lists.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    out = adata.copy()
    members = out.uns.pop("metacell_members", None)
    if members is not None:
        out.uns["metacell_membership"] = pd.DataFrame(
            [(mc, cell) for mc, cells in members.items() for cell in cells],
            columns=["metacell", "cell"],
        )
    out.write_h5ad(path)
    logger.info("Wrote %d metacells to %s", out.n_obs, path)
    return path


def load_metacells(path: PathLike) -> Any:
    """Read metacells written by ``save_metacells``."""
    import anndata as ad

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Metacell file not found: {path}")
    adata = ad.read_h5ad(path)
    membership = adata.uns.pop("metacell_membership", None)
    if membership is not None:
        membership = pd.DataFrame(membership)
        members: Dict[str, List[str]] = {}
        for mc, cell in zip(membership["metacell"].astype(str), membership["cell"].astype(str)):
            members.setdefault(mc, []).append(cell)
        adata.uns["metacell_members"] = members
    return adata


def save_experiment_tables(experiment: Any, output_dir: PathLike) -> Dict[str, Path]:
    """Write every tabular artifact of an experiment as CSV.

    Returns
    -------
    Dict[str, Path]
        Artifact name -> written path
    """
    out = ensure_output_dir(Path(output_dir) / experiment.name)
    written: Dict[str, Path] = {}
    if experiment.power_table is not None:
        written["power_table"] = write_dataframe(experiment.power_table, out / "power_table.csv")
    if experiment.modules is not None:
        written["modules"] = write_dataframe(experiment.modules, out / "modules.csv")
    for key, mes in experiment.eigengenes.items():
        written[key] = write_dataframe(mes, out / f"{key}.csv", index=True)
    for key, dme in experiment.dmes.items():
        written[f"dme_{key}"] = write_dataframe(dme, out / f"dme_{key}.csv")
    if experiment.hub_genes is not None:
        written["hub_genes"] = write_dataframe(experiment.hub_genes, out / "hub_genes.csv")
    if experiment.traits is not None:
        written["traits"] = write_dataframe(experiment.traits, out / "module_traits.csv")
    return written
