"""
Environment pipeline definitions.

Workflows move through a fixed, ordered pipeline:
1. DEVELOPMENT - where commits land
2. ETE - end-to-end testing
3. QA - quality assurance
4. PRODUCTION - terminal environment, nothing is promoted out of it
"""
from enum import Enum
from typing import Dict, Optional, Tuple


class Environment(str, Enum):
    DEVELOPMENT = "development"
    ETE = "ete"
    QA = "qa"
    PRODUCTION = "production"


# Promotion order. Adjacency is derived from this tuple only.
PIPELINE: Tuple[Environment, ...] = (
    Environment.DEVELOPMENT,
    Environment.ETE,
    Environment.QA,
    Environment.PRODUCTION,
)

def check_pipeline(pipeline: Tuple[Environment, ...]) -> None:
    if not len(set(pipeline)) == len(pipeline) == len(Environment):
        raise RuntimeError("every Environment must appear in PIPELINE exactly once")


check_pipeline(PIPELINE)


ENVIRONMENT_LABELS: Dict[Environment, Dict[str, str]] = {
    Environment.DEVELOPMENT: {"label": "Development", "short_label": "DEV"},
    Environment.ETE: {"label": "End-to-End Testing", "short_label": "ETE"},
    Environment.QA: {"label": "Quality Assurance", "short_label": "QA"},
    Environment.PRODUCTION: {"label": "Production", "short_label": "PROD"},
}


def pipeline_index(environment: Environment) -> int:
    return PIPELINE.index(Environment(environment))


def next_environment(environment: Environment) -> Optional[Environment]:
    """
    Get the environment that follows `environment` in the pipeline.

    Returns:
        The next environment, or None if `environment` is terminal
    """
    index = pipeline_index(environment)
    if index + 1 < len(PIPELINE):
        return PIPELINE[index + 1]
    return None


def is_terminal(environment: Environment) -> bool:
    return next_environment(environment) is None


def get_label(environment: Environment) -> str:
    return ENVIRONMENT_LABELS[Environment(environment)]["label"]


def get_short_label(environment: Environment) -> str:
    return ENVIRONMENT_LABELS[Environment(environment)]["short_label"]
