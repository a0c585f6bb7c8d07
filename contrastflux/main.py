from contrastflux.workflow.dataset import Dataset
from contrastflux.analysis.limma_pipeline import run_contrasts
from contrastflux.design.contrastbuilder import ContrastRegistry
from contrastflux.dataset.contrastresults import PipelineResults
from contrastflux.export.de_exporter import DEExporter
from contrastflux.utils.config import AnalysisConfig
from contrastflux.utils.utils import log_time, log_info


@log_time("ContrastFlux Pipeline")
def run_pipeline(config: dict) -> PipelineResults:
    dataset = Dataset(**config)
    adata = dataset.get_anndata()

    analysis_config = AnalysisConfig.from_dict(config.get("analysis"))
    registry = ContrastRegistry.from_config(config.get("contrasts"))
    registry.validate(adata.obs)

    results = run_contrasts(
        adata,
        registry,
        analysis_config,
        raise_on_error=bool((config.get("analysis") or {}).get("raise_on_error", False)),
    )

    export_config = config.get("exports") or {}
    exporter = DEExporter(results,
                          output_path=export_config.get("path_table", "results/contrastflux"),
                          use_xlsx=bool(export_config.get("use_xlsx", False)),
                          adata=adata,
                          config=config,
                          )
    if export_config.get("export_table", True):
        exporter.export()
    if export_config.get("path_h5ad"):
        exporter.export_adata(export_config.get("path_h5ad"))

    for name, err in results.failures.items():
        log_info(f"Failed contrast '{name}': {err}")
    return results
