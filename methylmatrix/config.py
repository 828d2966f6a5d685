"""
Configuration settings for MethylMatrix.

Defaults for signal aggregation, clustering and differential methylation
testing, overridable through environment variables (prefix METHYLMATRIX_)
or a .env file.
"""

from typing import Dict, List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


def _ucsc_chroms(autosomes: int, extra: List[str]) -> List[str]:
    return [f"chr{i}" for i in range(1, autosomes + 1)] + extra


class GenomeConfig:
    """Reference genome configuration."""

    SUPPORTED_GENOMES = {
        "hg38": {
            "name": "Human (hg38/GRCh38)",
            "species": "Homo sapiens",
            "style": "UCSC",
            "chromosomes": _ucsc_chroms(22, ["chrX", "chrY", "chrM"]),
        },
        "hg19": {
            "name": "Human (hg19/GRCh37)",
            "species": "Homo sapiens",
            "style": "UCSC",
            "chromosomes": _ucsc_chroms(22, ["chrX", "chrY", "chrM"]),
        },
        "GRCh38": {
            "name": "Human (Ensembl GRCh38)",
            "species": "Homo sapiens",
            "style": "NCBI",
            "chromosomes": [str(i) for i in range(1, 23)] + ["X", "Y", "MT"],
        },
        "mm10": {
            "name": "Mouse (mm10/GRCm38)",
            "species": "Mus musculus",
            "style": "UCSC",
            "chromosomes": _ucsc_chroms(19, ["chrX", "chrY", "chrM"]),
        },
        "mm39": {
            "name": "Mouse (mm39/GRCm39)",
            "species": "Mus musculus",
            "style": "UCSC",
            "chromosomes": _ucsc_chroms(19, ["chrX", "chrY", "chrM"]),
        },
    }


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="METHYLMATRIX_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"

    # Signal aggregation
    extend: int = 5000
    bin_width: int = 50
    anchor_mode: str = "center"  # or "scale"
    target_bins: Optional[int] = None
    summary: str = "mean"
    smooth: bool = False
    smooth_kernel: int = 3
    n_workers: int = 1

    # Clustering
    n_clusters: int = 3
    random_seed: int = 123
    na_policy: str = "impute"  # or "exclude"

    # Differential methylation
    lambda_bp: int = 1000
    C: float = 2.0
    min_cpgs: int = 5
    pcutoff: float = 0.05
    fdr: float = 0.05
    pseudocount: float = 0.5
    all_cov: bool = True

    # Annotation
    top_n: int = 10
    promoter_upstream: int = 2000
    promoter_downstream: int = 200

    # Chromosome names that the UCSC/NCBI prefix rule cannot translate
    extra_chromosome_aliases: Dict[str, str] = Field(default_factory=dict)

    def get_genome_config(self, genome: str) -> Dict:
        """Get configuration for a specific genome."""
        if genome not in GenomeConfig.SUPPORTED_GENOMES:
            raise ValueError(f"Unsupported genome: {genome}. Supported: {list(GenomeConfig.SUPPORTED_GENOMES.keys())}")
        return GenomeConfig.SUPPORTED_GENOMES[genome]


# Global settings instance
settings = Settings()
