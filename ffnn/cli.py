"""
cli.py
~~~~~~

Command-line harness: load the sensor data, train or load a network,
report predictions and metrics, and optionally save the model.

Usage:
    ffnn train --data sensor_readings_24.csv --save-model
    ffnn evaluate --model model.csv --data sensor_readings_24.csv
"""

import argparse
import logging
import sys
from typing import List, Optional

import numpy as np

from ffnn.config import RunConfig
from ffnn.dataset import SensorDataset, load_and_split
from ffnn.errors import NetworkError
from ffnn.evaluation import evaluate_network, format_metrics, format_prediction
from ffnn.logging_config import configure_logging
from ffnn.network import Network

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog='ffnn',
        description='Train and evaluate a feed-forward collision classifier.'
    )
    sub = p.add_subparsers(dest='command', required=True)

    def add_common(cmd: argparse.ArgumentParser) -> None:
        cmd.add_argument('--data', dest='data_path', help='sensor CSV file')
        cmd.add_argument('--train-ratio', type=float)
        cmd.add_argument('--seed', type=int, help='seed for the split and weights')
        cmd.add_argument('--log-file', help='append log output to this file')
        cmd.add_argument('--show-predictions', action='store_true',
                         help='log every test prediction')

    train = sub.add_parser('train', help='train a new network')
    add_common(train)
    train.add_argument('--epochs', type=int)
    train.add_argument('--batch-size', type=int)
    train.add_argument('--learning-rate', type=float)
    train.add_argument('--save-model', nargs='?', const='', default=None,
                       metavar='PATH', help='save the trained model')
    train.add_argument('--quiet', action='store_true',
                       help='no training progress output')

    evaluate = sub.add_parser('evaluate', help='evaluate a saved model')
    add_common(evaluate)
    evaluate.add_argument('--model', dest='model_path', help='model CSV file')

    return p.parse_args(argv)


def build_config(args: argparse.Namespace) -> RunConfig:
    overrides = {
        name: getattr(args, name, None)
        for name in ('data_path', 'train_ratio', 'seed', 'log_file',
                     'epochs', 'batch_size', 'learning_rate', 'model_path')
    }
    return RunConfig.from_env(**overrides).validate()


def build_network(config: RunConfig, rng: np.random.Generator) -> Network:
    return Network.from_topology(config.layer_sizes, config.activations, rng=rng)


def report(network: Network, testing: SensorDataset, show_predictions: bool) -> float:
    """Log predictions and metrics for the test set; returns the accuracy."""
    if show_predictions:
        for i in range(len(testing)):
            prediction = float(network.predict(testing.features[i])[0])
            logger.info(format_prediction(
                i, int(testing.ids[i]), testing.features[i],
                prediction, float(testing.labels[i][0])
            ))

    cm = evaluate_network(network, testing.features, testing.labels)
    logger.info("Metrics\n" + format_metrics(cm))
    return cm.accuracy


def run(args: argparse.Namespace) -> int:
    config = build_config(args)
    configure_logging(config.log_file)

    rng = np.random.default_rng(config.seed)
    training, testing = load_and_split(config.data_path, config.train_ratio, rng)
    network = build_network(config, rng)

    if args.command == 'evaluate':
        logger.info(f"Loading model from {config.model_path}")
        network.load(config.model_path)
    else:
        network.train(
            training.features,
            training.labels,
            config.learning_rate,
            config.epochs,
            config.batch_size,
            verbose=not args.quiet
        )

    if len(testing):
        report(network, testing, args.show_predictions)
    else:
        logger.warning("No testing samples; skipping evaluation")

    if args.command == 'train':
        if args.save_model is not None:
            network.save(args.save_model or config.model_path)
        else:
            logger.info("Model not saved.")

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        return run(args)
    except NetworkError as e:
        logger.error(f"ERROR : {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
