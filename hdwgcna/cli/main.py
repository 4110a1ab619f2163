"""Command-line interface for hdwgcna.

Provides CLI commands for metacell construction, soft-power testing,
differential eigengene tests and full configured runs.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click

from .. import __version__
from ..errors import HdWGCNAError


def setup_logging(verbose: bool = False, debug: bool = False) -> logging.Logger:
    """Setup logging for CLI commands."""
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    return logging.getLogger("hdwgcna")


def _stage_logger(ctx: click.Context, name: str, out_dir: Path) -> Tuple[logging.Logger, Path]:
    """File logger under ``<out_dir>/logs`` that also echoes to the console."""
    from hdwgcna.io import get_logger

    level = logging.DEBUG if ctx.obj["debug"] else logging.INFO
    logger, log_path = get_logger(
        name=f"hdwgcna.cli.{name}",
        log_path=out_dir / "logs" / f"{name}.log",
        level=level,
    )
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level if (ctx.obj["verbose"] or ctx.obj["debug"]) else logging.WARNING)
    console_handler.setFormatter(
        logging.Formatter(fmt="%(asctime)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S")
    )
    logger.addHandler(console_handler)
    return logger, log_path


def _load_config(config: Optional[str]):
    from hdwgcna.config import HdWGCNAConfig

    if config:
        return HdWGCNAConfig.from_yaml(Path(config))
    return HdWGCNAConfig.default()


@click.group()
@click.version_option(version=__version__, prog_name="hdwgcna")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.option("--debug", is_flag=True, help="Enable debug output")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """hdwgcna: co-expression network analysis for single-cell data.

    Builds metacells, selects a soft power, detects gene modules and
    summarizes them as eigengenes.

    Examples:

        # Aggregate cells into metacells per cell type and sample
        hdwgcna metacells -i cells.h5ad -o out/ -g cell_type -g sample

        # Sweep soft powers on metacells
        hdwgcna test-powers -i out/metacells.h5ad -o out/ --group-by cell_type --group-name INH

        # Run everything from a config file
        hdwgcna run -i cells.h5ad -c hdwgcna.yaml -o out/
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["debug"] = debug
    ctx.obj["logger"] = setup_logging(verbose, debug)


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Input AnnData file (.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--group-by", "-g", multiple=True,
              help="obs column defining aggregation groups (repeatable)")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Configuration file (YAML)")
@click.option("--k", type=int, help="Cells per metacell")
@click.option("--max-shared", type=int, help="Maximum cells shared by two metacells")
@click.option("--min-cells", type=int, help="Skip groups with fewer cells")
@click.option("--reduction", help="Embedding key in obsm")
@click.option("--normalize/--no-normalize", default=True,
              help="Normalize and log-transform the metacells")
@click.pass_context
def metacells(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    group_by: Tuple[str, ...],
    config: Optional[str],
    k: Optional[int],
    max_shared: Optional[int],
    min_cells: Optional[int],
    reduction: Optional[str],
    normalize: bool,
) -> None:
    """Aggregate neighbouring cells into metacells."""
    import scanpy as sc
    from hdwgcna.core.metacells import MetacellAggregator, normalize_metacells
    from hdwgcna.io import log_yaml, save_metacells, write_dataframe

    cfg = _load_config(config)
    group_by = list(group_by) or cfg.metacell_group_by
    if not group_by:
        raise click.UsageError("Provide --group-by or metacell_group_by in the config")

    out_dir = Path(output_path)
    out_dir.mkdir(parents=True, exist_ok=True)
    logger, log_path = _stage_logger(ctx, "metacells", out_dir)

    logger.info("Loading AnnData...")
    adata = sc.read_h5ad(input_path)
    logger.info("Loaded %d cells, %d genes", adata.n_obs, adata.n_vars)

    aggregator = MetacellAggregator(cfg.metacells, logger=logger)
    try:
        result = aggregator.construct(
            adata,
            group_by=group_by,
            k=k,
            max_shared=max_shared,
            min_cells=min_cells,
            reduction=reduction,
        )
    except (HdWGCNAError, KeyError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if normalize:
        normalize_metacells(result.adata, logger=logger)

    output_file = save_metacells(result.adata, out_dir / "metacells.h5ad")
    if result.skipped_groups:
        import pandas as pd

        write_dataframe(pd.DataFrame(result.skipped_groups), out_dir / "skipped_groups.csv")
    log_yaml(log_path, {"stage": "metacells", "group_by": group_by, **result.to_dict()}, logger=logger)

    click.echo(
        f"Metacells complete: {result.n_metacells} metacells from "
        f"{len(result.group_counts)} groups ({len(result.skipped_groups)} skipped)"
    )
    click.echo(f"Output saved to: {output_file}")
    click.echo(f"Log file: {log_path}")


@cli.command("test-powers")
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Metacell AnnData file (.h5ad)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Configuration file (YAML)")
@click.option("--group-by", help="obs column restricting the observations")
@click.option("--group-name", multiple=True, help="Value of --group-by to keep (repeatable)")
@click.option("--network-type", type=click.Choice(["signed", "unsigned", "signed hybrid"]),
              help="Adjacency type")
@click.pass_context
def test_powers(
    ctx: click.Context,
    input_path: str,
    output_path: str,
    config: Optional[str],
    group_by: Optional[str],
    group_name: Tuple[str, ...],
    network_type: Optional[str],
) -> None:
    """Compute the scale-free fit for each candidate soft power."""
    import scanpy as sc
    from hdwgcna.core.network import (
        SoftPowerSelector,
        select_expression,
        select_genes,
        select_soft_power,
    )
    from hdwgcna.io import log_yaml, write_dataframe

    cfg = _load_config(config)
    group_by = group_by or cfg.network_group_by
    group_name = list(group_name) or cfg.network_group_name

    out_dir = Path(output_path)
    out_dir.mkdir(parents=True, exist_ok=True)
    logger, log_path = _stage_logger(ctx, "test_powers", out_dir)

    logger.info("Loading AnnData...")
    adata = sc.read_h5ad(input_path)
    logger.info("Loaded %d observations, %d genes", adata.n_obs, adata.n_vars)

    try:
        genes = select_genes(adata, cfg.genes)
        dat_expr = select_expression(
            adata, genes, group_by=group_by, group_name=group_name or None
        )
        selector = SoftPowerSelector(cfg.soft_power, logger=logger)
        table = selector.test_powers(
            dat_expr, network_type=network_type or cfg.network.network_type
        )
        power = select_soft_power(table, cfg.soft_power.r_squared_cut)
    except HdWGCNAError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    output_file = write_dataframe(table, out_dir / "power_table.csv")
    log_yaml(
        log_path,
        {
            "stage": "test_powers",
            "n_obs": dat_expr.shape[0],
            "n_genes": dat_expr.shape[1],
            "powers": table["Power"].tolist(),
            "selected_power": power,
        },
        logger=logger,
    )
    click.echo(f"Tested {len(table)} powers on {dat_expr.shape[1]} genes; selected power {power}")
    click.echo(f"Output saved to: {output_file}")
    click.echo(f"Log file: {log_path}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Single-cell AnnData file (.h5ad) with observation metadata")
@click.option("--mes", "mes_path", required=True, type=click.Path(exists=True),
              help="Eigengene table (CSV, observations x modules)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--group-by", required=True, help="obs column defining the groups")
@click.option("--group1", multiple=True, help="Values of --group-by in group 1 (repeatable)")
@click.option("--group2", multiple=True, help="Values of --group-by in group 2 (repeatable)")
@click.option("--test", type=click.Choice(["wilcoxon", "t-test"]), default="wilcoxon",
              help="Statistical test")
@click.pass_context
def dme(
    ctx: click.Context,
    input_path: str,
    mes_path: str,
    output_path: str,
    group_by: str,
    group1: Tuple[str, ...],
    group2: Tuple[str, ...],
    test: str,
) -> None:
    """Test module eigengenes for differences between groups.

    With --group1 and --group2 the two groups are compared; without them
    every value of --group-by is tested against the rest.
    """
    import pandas as pd
    import scanpy as sc
    from hdwgcna.core.differential import DMEConfig, DMETester
    from hdwgcna.io import log_yaml, write_dataframe

    if bool(group1) != bool(group2):
        raise click.UsageError("--group1 and --group2 must be given together")

    out_dir = Path(output_path)
    out_dir.mkdir(parents=True, exist_ok=True)
    logger, log_path = _stage_logger(ctx, "dme", out_dir)

    adata = sc.read_h5ad(input_path)
    obs = adata.obs
    mes = pd.read_csv(mes_path, index_col=0)
    logger.info("Loaded %d observations x %d modules", mes.shape[0], mes.shape[1])

    if group_by not in obs.columns:
        raise click.UsageError(f"Column '{group_by}' not found in obs")

    tester = DMETester(DMEConfig(test=test), logger=logger)
    try:
        if group1:
            labels = obs[group_by].astype(str).reindex(mes.index)
            result = tester.two_group(
                mes,
                labels.index[labels.isin(group1)].tolist(),
                labels.index[labels.isin(group2)].tolist(),
            )
            output_file = write_dataframe(result, out_dir / "dme_two_group.csv")
        else:
            result = tester.one_vs_rest(mes, obs, group_by)
            output_file = write_dataframe(result, out_dir / f"dme_{group_by}_vs_rest.csv")
    except (HdWGCNAError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    significant = tester.summarize(result)
    log_yaml(
        log_path,
        {
            "stage": "dme",
            "group_by": group_by,
            "mode": "two_group" if group1 else "one_vs_rest",
            "test": test,
            "n_tests": len(result),
            "significant": significant,
        },
        logger=logger,
    )
    n_significant = sum(significant.values())
    click.echo(f"DME complete: {n_significant} of {len(result)} tests significant")
    click.echo(f"Output saved to: {output_file}")
    click.echo(f"Log file: {log_path}")


@cli.command()
@click.option("--input", "-i", "input_path", required=True, type=click.Path(exists=True),
              help="Single-cell AnnData file (.h5ad)")
@click.option("--config", "-c", type=click.Path(exists=True),
              help="Configuration file (YAML)")
@click.option("--out", "-o", "output_path", required=True, type=click.Path(),
              help="Output directory")
@click.option("--trait", "-t", multiple=True,
              help="obs column to correlate with eigengenes (repeatable)")
@click.pass_context
def run(
    ctx: click.Context,
    input_path: str,
    config: Optional[str],
    output_path: str,
    trait: Tuple[str, ...],
) -> None:
    """Run the full analysis from configuration.

    Builds metacells, sweeps soft powers, constructs the network and
    computes eigengenes, kME, hub genes and (when configured)
    differential eigengenes.
    """
    verbose = ctx.obj["verbose"]

    import scanpy as sc
    from hdwgcna.pipeline import PipelineLogger, run_pipeline

    cfg = _load_config(config)
    out_dir = Path(output_path)

    pipeline_logger = PipelineLogger(
        str(out_dir / "logs"), log_level="DEBUG" if verbose else "INFO"
    )
    pipeline_logger.setup()

    try:
        pipeline_logger.logger.info("Loading AnnData...")
        adata = sc.read_h5ad(input_path)
        store, summary = run_pipeline(
            adata,
            cfg,
            output_dir=out_dir,
            traits=list(trait) or None,
            logger=pipeline_logger,
        )
    except HdWGCNAError as e:
        click.echo(f"Pipeline failed: {e}", err=True)
        sys.exit(1)
    finally:
        pipeline_logger.close()

    experiment = summary["experiment"]
    click.echo(
        f"Pipeline completed successfully: {experiment['n_modules']} modules "
        f"at soft power {experiment['soft_power']}"
    )
    click.echo(f"Output saved to: {out_dir / cfg.experiment_name}")


def main() -> None:
    """Main entry point for CLI."""
    cli(obj={})


if __name__ == "__main__":
    main()
