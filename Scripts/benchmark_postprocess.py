from __future__ import annotations

import argparse
import logging
import statistics
import time
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

import numpy as np

from yolo_decode import EngineConfig, PostprocessEngine, get_preset, load_onnx_pipeline


@dataclass(frozen=True)
class TimingSummary:
    n: int
    mean_ms: float
    p50_ms: float
    p90_ms: float
    p95_ms: float


def _percentile(sorted_values: List[float], q: float) -> float:
    if not sorted_values:
        raise ValueError("No values provided.")
    if q < 0.0 or q > 100.0:
        raise ValueError("q must be in [0, 100].")
    pos = (q / 100.0) * (len(sorted_values) - 1)
    lo = int(np.floor(pos))
    hi = int(np.ceil(pos))
    t = pos - lo
    return float(sorted_values[lo] * (1.0 - t) + sorted_values[hi] * t)


def _summarize_ms(values_s: List[float]) -> TimingSummary:
    ms = sorted(v * 1000.0 for v in values_s)
    if not ms:
        return TimingSummary(0, 0.0, 0.0, 0.0, 0.0)
    return TimingSummary(
        n=len(ms),
        mean_ms=float(statistics.fmean(ms)),
        p50_ms=_percentile(ms, 50.0),
        p90_ms=_percentile(ms, 90.0),
        p95_ms=_percentile(ms, 95.0),
    )


def _format_summary(label: str, s: TimingSummary) -> str:
    return (
        f"{label}: n={s.n} mean={s.mean_ms:.3f}ms p50={s.p50_ms:.3f}ms "
        f"p90={s.p90_ms:.3f}ms p95={s.p95_ms:.3f}ms"
    )


def _synthetic_outputs(
    kind: str,
    anchors: int,
    classes: int,
    proto: int,
    mask_len: int,
    hits: int,
    rng: np.random.Generator,
) -> Tuple[Sequence[np.ndarray], Optional[Tuple[int, ...]]]:
    """
    Random model outputs with `hits` anchors above any sensible threshold.
    """

    if kind == "pose":
        features = 5 + 17 * 3
    elif kind == "segmentation":
        features = 4 + classes + mask_len
    else:
        features = 4 + classes if classes > 1 else 5

    out = np.zeros((1, features, anchors), dtype=np.float32)
    out[0, 0:2] = rng.uniform(0.0, 640.0, size=(2, anchors))
    out[0, 2:4] = rng.uniform(8.0, 120.0, size=(2, anchors))
    score_rows = 1 if kind == "pose" or classes == 1 else classes
    out[0, 4 : 4 + score_rows] = rng.uniform(0.0, 0.1, size=(score_rows, anchors))
    idx = rng.choice(anchors, size=min(hits, anchors), replace=False)
    out[0, 4, idx] = rng.uniform(0.5, 1.0, size=idx.size)

    if kind == "pose":
        out[0, 5:] = rng.uniform(0.0, 640.0, size=(features - 5, anchors))
        out[0, 7::3] = rng.uniform(0.0, 1.0, size=(17, anchors))
        return [out], None
    if kind == "segmentation":
        out[0, 4 + classes :] = rng.normal(size=(mask_len, anchors))
        protos = rng.normal(size=(1, proto, proto, mask_len)).astype(np.float32)
        return [out, protos], protos.shape
    return [out], None


def _run(
    fn,
    warmup: int,
    repeats: int,
) -> List[float]:
    times: List[float] = []
    for i in range(warmup + repeats):
        t0 = time.perf_counter()
        fn()
        t1 = time.perf_counter()
        if i >= warmup:
            times.append(t1 - t0)
    return times


def main() -> int:
    parser = argparse.ArgumentParser(description="Benchmark post-processing latency per layout variant.")
    parser.add_argument(
        "--kind",
        choices=["box", "multi_class", "pose", "segmentation"],
        default="multi_class",
        help="Synthetic layout to benchmark.",
    )
    parser.add_argument("--model", default=None, help="Benchmark a real ONNX model end-to-end instead.")
    parser.add_argument("--use-gpu", action="store_true", help="Prefer the CUDA execution provider for --model.")
    parser.add_argument("--preset", default=None, help="Start from a named configuration preset.")
    parser.add_argument("--anchors", type=int, default=8400, help="Anchors per frame.")
    parser.add_argument("--classes", type=int, default=80, help="Class channels (box kind forces 1).")
    parser.add_argument("--proto", type=int, default=160, help="Proto map size for segmentation.")
    parser.add_argument("--mask-len", type=int, default=32, help="Mask coefficients per anchor.")
    parser.add_argument("--hits", type=int, default=50, help="Anchors above threshold per frame.")
    parser.add_argument("--conf", type=float, default=None, help="Override the confidence threshold.")
    parser.add_argument("--warmup", type=int, default=10, help="Warmup iterations to run but not record.")
    parser.add_argument("--repeats", type=int, default=100, help="Recorded iterations.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args()

    if args.warmup < 0:
        raise ValueError("--warmup must be >= 0")
    if args.repeats < 1:
        raise ValueError("--repeats must be >= 1")
    if args.anchors < 1 or args.classes < 1 or args.hits < 0:
        raise ValueError("--anchors and --classes must be >= 1, --hits >= 0")

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = get_preset(args.preset) if args.preset else EngineConfig()
    if args.conf is not None:
        cfg = replace(cfg, confidence_threshold=float(args.conf))

    if args.model:
        pipeline = load_onnx_pipeline(args.model, cfg, use_gpu=args.use_gpu)
        w, h = pipeline.engine.cfg.input_size
        image = np.random.default_rng(0).integers(0, 255, size=(h, w, 3), dtype=np.uint8)
        times = _run(lambda: pipeline(image), args.warmup, args.repeats)
        print(_format_summary(f"end-to-end ({pipeline.backend_name})", _summarize_ms(times)))
        pipeline.close()
        return 0

    classes = 1 if args.kind in ("box", "pose") else int(args.classes)
    rng = np.random.default_rng(0)
    outputs, proto_shape = _synthetic_outputs(
        args.kind, int(args.anchors), classes, int(args.proto), int(args.mask_len), int(args.hits), rng
    )
    engine = PostprocessEngine.for_outputs(
        outputs[0].shape,
        proto_shape,
        cfg,
        labels=[f"class_{i}" for i in range(classes)],
    )

    with engine:
        sample = engine.process(outputs, (1280, 720))
        times = _run(lambda: engine.process(outputs, (1280, 720)), args.warmup, args.repeats)

    print(
        f"layout={engine.layout.variant.value} features={engine.layout.feature_count} "
        f"anchors={engine.layout.anchor_count} candidates={sample.candidate_count} kept={len(sample.detections)}"
    )
    print(_format_summary("postprocess", _summarize_ms(times)))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
