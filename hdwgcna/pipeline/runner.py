"""End-to-end hdWGCNA run.

Stages run in dependency order through ``StageExecutor``:

    metacells -> genes -> expression -> powers -> network
              -> eigengenes -> connectivity -> hubs [-> traits] [-> dme]

Every artifact lands in one ``WGCNAExperiment`` of the caller's
``ExperimentStore``.
"""

from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
import logging
import threading

from ..config import HdWGCNAConfig
from ..core.differential import DMETester
from ..core.eigengenes import ModuleSummarizer, get_hub_genes, module_trait_correlation
from ..core.experiment import HARMONIZED_EIGENGENES, RAW_EIGENGENES, ExperimentStore
from ..core.metacells import MetacellAggregator, normalize_metacells
from ..core.network import NetworkConstructor, SoftPowerSelector, select_expression, select_genes
from ..io import ensure_output_dir, log_json, log_yaml, save_experiment_tables, save_metacells
from .executor import StageExecutor
from .logger import PipelineLogger


def _resolve_tom_dir(tom_dir: Optional[str], output_dir: Optional[Path]) -> Optional[Path]:
    if tom_dir is None or output_dir is None:
        return None
    path = Path(tom_dir)
    return path if path.is_absolute() else output_dir / path


def run_pipeline(
    adata: Any,  # AnnData
    config: Optional[HdWGCNAConfig] = None,
    output_dir: Optional[Union[str, Path]] = None,
    store: Optional[ExperimentStore] = None,
    traits: Optional[Sequence[str]] = None,
    logger: Optional[PipelineLogger] = None,
    cancel_event: Optional[threading.Event] = None,
) -> Tuple[ExperimentStore, Dict[str, Any]]:
    """Run metacells through module summaries on one single-cell dataset.

    Parameters
    ----------
    adata : AnnData
        Normalized single-cell data with the metacell embedding in ``obsm``
        and every obs column named in the configuration. Not modified.
    config : HdWGCNAConfig, optional
        Run configuration. Defaults if None.
    output_dir : str or Path, optional
        Where to write metacells, TOM, tables and the run summary.
        Nothing is written if None.
    store : ExperimentStore, optional
        Store receiving the experiment. A new one is created if None.
    traits : Sequence[str], optional
        obs columns to correlate with module eigengenes
    logger : PipelineLogger, optional
        Receives stage events
    cancel_event : threading.Event, optional
        Checked between stages and inside long-running loops

    Returns
    -------
    Tuple[ExperimentStore, Dict[str, Any]]
        The store holding the finished experiment and a run summary

    Raises
    ------
    ValueError
        If ``metacell_group_by`` is empty
    """
    config = config or HdWGCNAConfig.default()
    store = store if store is not None else ExperimentStore()
    log = logger.logger if logger is not None else logging.getLogger(__name__)
    out = ensure_output_dir(output_dir) if output_dir is not None else None

    if not config.metacell_group_by:
        raise ValueError("metacell_group_by must name at least one obs column")

    experiment = store.create(config.experiment_name, overwrite=True)
    group_name: List[str] = list(config.network_group_name)
    experiment.group_by = config.network_group_by
    experiment.group_name = group_name

    def run_metacells(stage_results):
        aggregator = MetacellAggregator(config.metacells, logger=log)
        result = aggregator.construct(
            adata, group_by=config.metacell_group_by, cancel_event=cancel_event
        )
        if config.normalize_metacells:
            normalize_metacells(result.adata, logger=log)
        experiment.metacells = result.adata
        experiment.metacell_result = result
        if out is not None:
            save_metacells(result.adata, out / f"{config.experiment_name}_metacells.h5ad")
        return result.to_dict()

    def run_genes(stage_results):
        experiment.genes = select_genes(adata, config.genes)
        log.info("Selected %d genes for network analysis", len(experiment.genes))
        return {"n_genes": len(experiment.genes)}

    def run_expression(stage_results):
        metacells = experiment.require("metacells", "network expression")
        dat_expr = select_expression(
            metacells,
            experiment.genes,
            group_by=config.network_group_by,
            group_name=group_name or None,
        )
        # zero-variance genes are dropped here
        experiment.dat_expr = dat_expr
        experiment.genes = list(dat_expr.columns)
        return {"n_obs": int(dat_expr.shape[0]), "n_genes": int(dat_expr.shape[1])}

    def run_powers(stage_results):
        selector = SoftPowerSelector(config.soft_power, logger=log)
        experiment.power_table = selector.test_powers(
            experiment.require("dat_expr", "soft power selection"),
            network_type=config.network.network_type,
            correlation=config.network.correlation,
            cancel_event=cancel_event,
        )
        return {"n_powers": len(experiment.power_table)}

    def run_network(stage_results):
        network_config = replace(config.network, tom_dir=_resolve_tom_dir(config.network.tom_dir, out))
        constructor = NetworkConstructor(network_config, config.soft_power, logger=log)
        result = constructor.construct(
            experiment.dat_expr,
            power_table=experiment.power_table,
            network_name=config.experiment_name,
            cancel_event=cancel_event,
        )
        experiment.network = result
        experiment.modules = result.modules
        return result.to_dict()

    summarizer = ModuleSummarizer(config.eigengenes, logger=log)

    def run_eigengenes(stage_results):
        result = summarizer.eigengenes(
            adata,
            experiment.require("modules", "eigengenes"),
        )
        experiment.eigengenes[RAW_EIGENGENES] = result.mes
        if result.hmes is not None:
            experiment.eigengenes[HARMONIZED_EIGENGENES] = result.hmes
        return result.to_dict()

    def run_connectivity(stage_results):
        experiment.modules = summarizer.module_connectivity(
            adata,
            experiment.modules,
            experiment.get_mes(config.eigengenes.use_harmonized),
            group_by=config.network_group_by,
            group_name=group_name or None,
        )
        return {"n_genes": len(experiment.modules)}

    def run_hubs(stage_results):
        experiment.hub_genes = get_hub_genes(experiment.modules, config.eigengenes.n_hub_genes)
        return {"n_hub_genes": len(experiment.hub_genes)}

    executor = StageExecutor(logger=logger, cancel_event=cancel_event)
    executor.register_stage("metacells", run_metacells, name="Metacell construction")
    executor.register_stage("genes", run_genes, name="Gene selection")
    executor.register_stage(
        "expression", run_expression, depends_on=["metacells", "genes"], name="Network expression"
    )
    executor.register_stage("powers", run_powers, depends_on=["expression"], name="Soft power sweep")
    executor.register_stage("network", run_network, depends_on=["powers"], name="Network construction")
    executor.register_stage(
        "eigengenes", run_eigengenes, depends_on=["network"], name="Module eigengenes"
    )
    executor.register_stage(
        "connectivity", run_connectivity, depends_on=["eigengenes"], name="Module connectivity"
    )
    executor.register_stage("hubs", run_hubs, depends_on=["connectivity"], name="Hub genes")

    if traits:
        def run_traits(stage_results):
            experiment.traits = module_trait_correlation(
                experiment.get_mes(config.eigengenes.use_harmonized),
                adata.obs,
                traits,
                group_by=config.network_group_by,
                logger=log,
            )
            return {"n_tests": len(experiment.traits)}

        executor.register_stage(
            "traits", run_traits, depends_on=["eigengenes"], name="Module-trait correlation"
        )

    if config.dme.group_by:
        def run_dme(stage_results):
            tester = DMETester(config.dme, logger=log)
            key = f"{config.dme.group_by}_vs_rest"
            dmes = tester.one_vs_rest(
                experiment.get_mes(config.dme.harmonized), adata.obs, config.dme.group_by
            )
            experiment.dmes[key] = dmes
            return tester.summarize(dmes)

        executor.register_stage(
            "dme", run_dme, depends_on=["eigengenes"], name="Differential eigengenes"
        )

    results = executor.run()

    summary: Dict[str, Any] = {
        "experiment": experiment.summary(),
        "stages": results,
        "durations": dict(executor.durations),
    }
    if out is not None:
        written = save_experiment_tables(experiment, out)
        config.to_yaml(out / "config.yaml")
        for stage_id in executor.completed_stages:
            log_yaml(
                out / "stages.yaml",
                {
                    "stage": stage_id,
                    "duration_seconds": executor.durations[stage_id],
                    "result": results[stage_id],
                },
            )
        summary["outputs"] = {name: str(path) for name, path in written.items()}
        log_json(out / "run_summary.jsonl", summary)
        log.info("Wrote %d tables to %s", len(written), out / experiment.name)
    return store, summary
