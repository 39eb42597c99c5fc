#!/usr/bin/env python3
"""
Run autonomous audiometry sessions against simulated listeners.

Each listener is tested with the full protocol on a virtual clock; the
measured thresholds are compared with the listener's true thresholds.
"""

import argparse
import logging
import sys

import pandas as pd

from auto_audiometry.analysis.reporting import results_to_dataframe
from auto_audiometry.exceptions import ConfigurationError
from auto_audiometry.procedures.explanation import TemplateExplainer
from auto_audiometry.simulation import simulate_session
from auto_audiometry.utils.config import ProtocolConfig, load_config

logger = logging.getLogger("run_simulation")

DEFAULT_CONFIG = {
    'protocol': {},
    'simulation': {
        'seed': 42,
        'n_listeners': 1,
        'listener': {1000: 20},
        'response_model': {},
    },
}


def run_simulation(config, plot=False):
    """
    Run the simulated sessions described by ``config``.

    Args:
        config (dict): Mapping with ``protocol`` and ``simulation`` sections
        plot (bool): Show an audiogram of the first session

    Returns:
        pd.DataFrame: One row per threshold with the true threshold and error
    """
    protocol = ProtocolConfig.from_dict(config.get('protocol'))
    simulation = config.get('simulation', {})
    profile = simulation.get('listener') or DEFAULT_CONFIG['simulation']['listener']
    seed = simulation.get('seed')
    n_listeners = int(simulation.get('n_listeners', 1))

    frames = []
    first = None
    for index in range(n_listeners):
        result = simulate_session(
            profile, protocol,
            random_state=None if seed is None else seed + index,
            response_model_params=simulation.get('response_model'),
            explainer=TemplateExplainer(),
        )
        if result.report is None:
            logger.warning("Listener %d: run did not complete", index)
            continue
        first = first or result

        frame = results_to_dataframe(result.report.results)
        frame['listener'] = index
        frame['true_threshold'] = [
            result.listener.true_threshold(ear, freq) for ear, freq in zip(frame['ear'], frame['frequency'])
        ]
        frame['error'] = frame['threshold'] - frame['true_threshold']
        frames.append(frame)

        report = result.report
        logger.info("Listener %d: %d thresholds, overall confidence %s%%, malingering risk %s",
                    index, report.total_tests, report.overall_confidence,
                    report.malingering.get('risk_level'))

    if plot and first is not None:
        import matplotlib.pyplot as plt
        from auto_audiometry.visualization import plot_audiogram

        truth = {ear.value: thresholds for ear, thresholds in first.listener.profiles.items()}
        plot_audiogram(first.report.results, true_thresholds=truth, title="Simulated Audiogram")
        plt.show()

    if not frames:
        return pd.DataFrame()
    return pd.concat(frames, ignore_index=True)


def main():
    parser = argparse.ArgumentParser(description='Run autonomous audiometry simulation')
    parser.add_argument('--config', type=str,
                        default='configs/default.yaml',
                        help='Path to configuration file')
    parser.add_argument('--seed', type=int,
                        help='Random seed for reproducibility')
    parser.add_argument('--n-listeners', type=int,
                        help='Number of listeners to simulate')
    parser.add_argument('--threshold', type=float,
                        help='Flat true threshold (dB HL) for both ears, overrides the config profile')
    parser.add_argument('--plot', action='store_true',
                        help='Show an audiogram of the first listener')
    parser.add_argument('--log-level', type=str, default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging verbosity')

    args = parser.parse_args()
    logging.basicConfig(level=getattr(logging, args.log_level),
                        format='%(asctime)s %(levelname)s %(name)s: %(message)s')

    # Load configuration
    try:
        config = load_config(args.config)
    except FileNotFoundError:
        logger.warning("Configuration file %s not found. Using defaults.", args.config)
        config = {k: dict(v) for k, v in DEFAULT_CONFIG.items()}

    simulation = config.setdefault('simulation', {})
    if args.seed is not None:
        simulation['seed'] = args.seed
    if args.n_listeners:
        simulation['n_listeners'] = args.n_listeners
    if args.threshold is not None:
        frequencies = config.get('protocol', {}).get('frequencies') or ProtocolConfig().frequencies
        simulation['listener'] = {f: args.threshold for f in frequencies}

    try:
        results = run_simulation(config, plot=args.plot)
    except ConfigurationError as e:
        logger.error("Invalid configuration: %s", e)
        return 2

    if results.empty:
        logger.error("No simulated session completed")
        return 1

    summary = results.groupby(['ear', 'frequency'])['error'].agg(['mean', 'std', 'count'])
    print(summary.round(1).to_string())
    print(f"\nMean absolute error: {results['error'].abs().mean():.1f} dB")
    return 0


if __name__ == "__main__":
    sys.exit(main())
