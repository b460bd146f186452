"""
psnbench - concurrent benchmark driver for pseudonymisation backends.

Runs configurable create/read/update/delete/ping workloads against a
record store from many worker threads, and writes cumulative throughput
reports to CSV files while the scenario runs.
"""

from psnbench.config import Configuration
from psnbench.distribution import WorkDistribution, WorkKind
from psnbench.driver import ScenarioResult, run_all, run_scenario
from psnbench.statistics import Statistics
from psnbench.tokens import CachedCredential, CredentialCache

__version__ = "1.0.0"

__all__ = [
    "CachedCredential",
    "Configuration",
    "CredentialCache",
    "ScenarioResult",
    "Statistics",
    "WorkDistribution",
    "WorkKind",
    "run_all",
    "run_scenario",
]
