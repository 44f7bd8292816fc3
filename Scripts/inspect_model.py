import argparse
import time
from pathlib import Path

import numpy as np

from edge_yolo_kit import load_engine
from edge_yolo_kit.errors import QuantizationConventionError
from edge_yolo_kit.quantize import representable_range, resolve_input_convention


def main() -> int:
    parser = argparse.ArgumentParser(description="Print tensor types, shapes and quantization of a detector model.")
    parser.add_argument("model", help="Path to the quantized detector (.tflite/.onnx).")
    parser.add_argument("--backend", default=None, help="Force backend: tflite / onnxruntime.")
    parser.add_argument("--reg-max", type=int, default=16, help="Distribution bins per box side.")
    parser.add_argument("--invoke", action="store_true", help="Run one invoke on a mid-gray input and time it.")
    args = parser.parse_args()

    engine = load_engine(Path(args.model), backend=args.backend, root=None)
    print(f"Backend: {engine.backend_name}")

    for i in range(engine.input_count):
        t = engine.input_tensor(i)
        lo, hi = representable_range(t.scale, t.zero_point) if t.scale > 0 else (0.0, 0.0)
        print(f"INPUT  {t.spec.describe()} range=[{lo:.4f}, {hi:.4f}]")
        try:
            convention = resolve_input_convention(t.scale, t.zero_point)
            print(f"       pixel convention: {convention.value}")
        except (QuantizationConventionError, ValueError) as exc:
            print(f"       pixel convention: unresolved ({exc})")

    for i in range(engine.output_count):
        t = engine.output_tensor(i)
        print(f"OUTPUT {t.spec.describe()}")
        channels = t.spec.shape[-1] if t.spec.shape else 0
        cells = t.spec.shape[-2] if len(t.spec.shape) >= 2 else 0
        classes = channels - 4 * args.reg_max
        grid = int(round(np.sqrt(cells))) if cells > 0 else 0
        square = "yes" if grid * grid == cells else "no"
        print(f"       cells={cells} grid={grid} (square: {square}) classes={classes}")

    if args.invoke:
        inp = engine.input_tensor(0)
        inp.data[...] = inp.zero_point
        t0 = time.perf_counter()
        engine.invoke()
        dt_us = (time.perf_counter() - t0) * 1e6
        print(f"Invoke: {dt_us:.0f} us")

    engine.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
