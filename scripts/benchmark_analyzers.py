from __future__ import annotations

import argparse
import json
from dataclasses import asdict

from petwatch.detection.benchmark import run_benchmark


def main() -> int:
    parser = argparse.ArgumentParser(description="Petwatch analyzer micro-benchmarks")
    parser.add_argument("--frames", type=int, default=120, help="Loop count for motion and sound loops")
    parser.add_argument("--width", type=int, default=640, help="Synthetic frame width")
    parser.add_argument("--height", type=int, default=360, help="Synthetic frame height")
    args = parser.parse_args()

    result = run_benchmark(frames=args.frames, frame_width=args.width, frame_height=args.height)
    print(json.dumps(asdict(result), indent=2, sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
