import logging
logger = logging.getLogger('bayesmc')


def clean_config(mcmc_config):
    """
    Copies the config dict and sets defaults.
    All config keys use lowercase with underscores.
    """
    mcmc_config = {str(k).lower(): v for k, v in (mcmc_config or {}).items()}

    # Define Defaults and retrieve values from dictionary (all lowercase)
    mcmc_config.setdefault('num_chains', 4)
    mcmc_config.setdefault('iterations', 3000)
    mcmc_config.setdefault('warmup_iterations', 1500)
    mcmc_config.setdefault('thinning_interval', 20)
    mcmc_config.setdefault('initial_population_length', 100)
    mcmc_config.setdefault('output_length', 10000)
    mcmc_config.setdefault('rng_seed', 12345)
    mcmc_config.setdefault('initialize_with_map', False)
    mcmc_config.setdefault('use_double', True)
    mcmc_config.setdefault('progress_changed_rate', 0.01)

    if type(mcmc_config["use_double"]) != bool:
        logger.warning("'use_double' must be 'True' or 'False'")

    return mcmc_config
