"""
Chain Algorithms for MCMC Sampling

Each algorithm is a frozen dataclass holding its tuning settings and
implementing the ChainAlgorithm interface from common.py. The sampler is
algorithm-agnostic: it calls chain_iteration once per inner iteration and
threads any per-chain algorithm state (e.g. running covariances) for it.

To add a new algorithm:
1. Subclass ChainAlgorithm in a new file in algorithms/
2. Implement validate() and chain_iteration(); override init_state() and
   snapshot() if the algorithm keeps per-chain state or reads other chains
3. Set min_chains / population_sampler class attributes as needed
4. Export from this __init__.py

Every algorithm rejects proposals outside the prior support (HMC clamps
instead) and uses the log-space Metropolis test log(U) <= log_ratio.
"""

from .common import ChainAlgorithm
from .rwmh import RWMH
from .arwmh import ARWMH
from .demc import DEMCz, DEMCzs, snooker_proposal
from .hmc import HMC, leapfrog, numerical_gradient
from .gibbs import Gibbs

__all__ = [
    'ChainAlgorithm',
    'RWMH',
    'ARWMH',
    'DEMCz',
    'DEMCzs',
    'snooker_proposal',
    'HMC',
    'leapfrog',
    'numerical_gradient',
    'Gibbs',
]
