"""
Result containers shared by the enrichment and topology engines
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import pandas as pd

from ..utils import get_logger

logger = get_logger(__name__)


@dataclass
class PathwayEnrichmentResult:
    """Container for pathway enrichment analysis results"""

    method: str
    database: str
    gene_count: int
    significant_pathways: int
    results_df: pd.DataFrame
    plot_paths: Dict[str, Path] = field(default_factory=dict)
    parameters: Dict[str, Any] = field(default_factory=dict)
    all_results_df: Optional[pd.DataFrame] = None

    @property
    def full_table(self) -> pd.DataFrame:
        return self.all_results_df if self.all_results_df is not None else self.results_df

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary"""
        return {
            "method": self.method,
            "database": self.database,
            "gene_count": self.gene_count,
            "significant_pathways": self.significant_pathways,
            "results_df": self.results_df.to_dict("records"),
            "plot_paths": {k: str(v) for k, v in self.plot_paths.items()},
            "parameters": {k: _jsonable(v) for k, v in self.parameters.items()},
        }

    def save_results(self, output_dir: Union[str, Path]) -> Dict[str, Path]:
        """Save results to files"""
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        files = {}

        results_file = output_dir / f"{self.method}_{self.database}_results.csv"
        self.full_table.to_csv(results_file, index=False)
        files["results"] = results_file

        if self.all_results_df is not None:
            significant_file = output_dir / f"{self.method}_{self.database}_significant.csv"
            self.results_df.to_csv(significant_file, index=False)
            files["significant"] = significant_file

        cutoff = self.parameters.get("pvalue_cutoff", self.parameters.get("cutoff", 0.05))
        summary_file = output_dir / f"{self.method}_{self.database}_summary.txt"
        with open(summary_file, "w") as f:
            f.write("Pathway Enrichment Analysis Summary\n")
            f.write(f"Method: {self.method}\n")
            f.write(f"Database: {self.database}\n")
            f.write(f"Input genes: {self.gene_count}\n")
            f.write(f"Gene sets tested: {len(self.full_table)}\n")
            f.write(f"Significant pathways (cutoff {cutoff}): {self.significant_pathways}\n")
            for key, value in sorted(self.parameters.items()):
                f.write(f"  {key}: {value}\n")
        files["summary"] = summary_file

        logger.info(f"Saved {self.method} results to {output_dir}")
        return files


def _jsonable(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    return str(value)
