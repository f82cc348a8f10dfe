#!/usr/bin/env python3
"""Script to warm the model cache and run the bundled model from the shell."""

import argparse
import sys
import time
from typing import Optional

import numpy as np
import structlog

from app.runtime.errors import BridgeError
from app.runtime.invoker import create_invoker
from libs.common.config import ModelBridgeConfig
from libs.common.logging import configure_logging, log_performance

logger = structlog.get_logger("run_model")


def load_input(path: Optional[str], size: int, seed: int) -> np.ndarray:
    """Load an input buffer from ``.npy`` or build a random one of ``size`` floats."""
    if path:
        return np.load(path)
    rng = np.random.default_rng(seed)
    return rng.random(size, dtype=np.float32)


def run(args: argparse.Namespace) -> int:
    config = ModelBridgeConfig(_env_file=args.env_file) if args.env_file else ModelBridgeConfig()
    configure_logging("run-model", args.log_level or config.ml_log_level, "console")

    invoker = create_invoker(config)
    try:
        start = time.time()
        invoker.ensure_loaded()
        log_performance("model.load", (time.time() - start) * 1000, model=config.ml_model_filename)

        if args.warm_only:
            print(f"Model cached at {invoker.artifact.path}")
            return 0

        values = load_input(args.input, invoker.expected_input_size, args.seed)

        output = []
        for i in range(args.repeat):
            start = time.time()
            output = invoker.run_model(values)
            log_performance("model.inference", (time.time() - start) * 1000, iteration=i + 1)

        print(f"Output size: {len(output)}")
        if args.output:
            np.save(args.output, np.asarray(output, dtype=np.float32))
            print(f"Output saved to {args.output}")
        return 0

    except BridgeError as e:
        logger.error("Model run failed", kind=e.kind, error=e.message)
        print(f"{e.kind}: {e.message}", file=sys.stderr)
        return 1
    finally:
        invoker.close()


def main():
    """Main function."""
    parser = argparse.ArgumentParser(description="Run the bundled ONNX model once")
    parser.add_argument("--input", help="Path to a .npy input buffer (random input if omitted)")
    parser.add_argument("--output", help="Save the flattened output to this .npy path")
    parser.add_argument("--repeat", type=int, default=1, help="Number of forward passes")
    parser.add_argument("--seed", type=int, default=0, help="Seed for the random input")
    parser.add_argument("--warm-only", action="store_true", help="Only copy and load the model")
    parser.add_argument("--env-file", help="Configuration .env file")
    parser.add_argument("--log-level", help="Override ML_LOG_LEVEL")

    args = parser.parse_args()
    if args.repeat < 1:
        parser.error("--repeat must be at least 1")

    sys.exit(run(args))


if __name__ == "__main__":
    main()
