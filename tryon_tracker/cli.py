from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence

import numpy as np
import typer

from .tracking.benchmark import BenchmarkReport, PoseDetectionBenchmark
from .tracking.config import config_as_dict, load_tracking_config
from .tracking.detectors import SyntheticPoseDetector
from .tracking.errors import ConfigError
from .tracking.session import FrameResult, TrackingSession

app = typer.Typer(help="Stabilise, validate and segment body poses for garment try-on overlays.")

SIMULATED_FRAME_MS = 1000.0 / 30.0


def _fail(message: str, *, code: int = 1) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _load_config(path: Optional[Path]):
    try:
        return load_tracking_config(path)
    except ConfigError as exc:
        _fail(str(exc))


def _configure_cli_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")


class _DroppingDetector:
    """Wraps a detector and reports no person on every ``drop_every``-th frame."""

    def __init__(self, detector: SyntheticPoseDetector, drop_every: int) -> None:
        self.detector = detector
        self.drop_every = drop_every
        self.calls = 0

    def __call__(self, frame: Any, width: float, height: float):
        self.calls += 1
        if self.drop_every > 0 and self.calls % self.drop_every == 0:
            return None
        return self.detector(frame, width, height)


class _FrameClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def render_frame_table(results: Sequence[FrameResult]) -> str:
    """Render a fixed-width table with one row per processed frame."""
    headers = ("frame", "status", "confidence", "corrections", "strategy", "ms")
    rows = []
    for index, result in enumerate(results, start=1):
        if result.tracking_lost:
            status = "exhausted" if result.recovery_exhausted else "lost"
        elif result.recovered:
            status = "recovered"
        else:
            status = "tracked"
        rows.append(
            {
                "frame": str(index),
                "status": status,
                "confidence": f"{result.confidence:.3f}",
                "corrections": str(len(result.corrections)),
                "strategy": result.recovery_strategy or "",
                "ms": f"{result.processing_time_ms:.2f}",
            }
        )
    widths = {key: len(key) for key in headers}
    for row in rows:
        for key in headers:
            widths[key] = max(widths[key], len(row[key]))

    def _format_line(values: Mapping[str, str]) -> str:
        return "  ".join(values[key].rjust(widths[key]) for key in headers)

    header_line = "  ".join(key.upper().rjust(widths[key]) for key in headers)
    body = "\n".join(_format_line(row) for row in rows)
    return "\n".join(filter(None, [header_line, body]))


def _echo_benchmark(report: BenchmarkReport) -> None:
    perf = report.performance
    typer.echo(f"Overall score: {report.overall_score:.3f}")
    typer.echo(
        f"Performance: {perf.frame_count} frames, {perf.average_processing_time:.2f} ms/frame "
        f"(~{perf.achievable_fps:.0f} fps), tracked {perf.tracked_rate:.0%}"
    )
    typer.echo(f"Stability: {report.overall_stability:.3f}")
    for pattern in report.stability:
        typer.echo(
            f"  {pattern.pattern:<8} raw={pattern.stability_score:.3f} smoothed={pattern.smoothed_stability:.3f} "
            f"jitter={pattern.jitter_score:.2f}->{pattern.smoothed_jitter:.2f}"
        )
    typer.echo(f"Recovery rate: {report.overall_recovery_rate:.3f}")
    for scenario in report.recovery:
        typer.echo(
            f"  {scenario.scenario:<20} rate={scenario.recovery_rate:.2f} "
            f"confidence={scenario.average_confidence:.2f} max_misses={scenario.max_consecutive_failures}"
        )
    typer.echo(f"Correction improvement: {report.average_improvement:+.3f}")
    typer.echo(f"Quality assessment accuracy: {report.assessment_accuracy:.3f}")
    for level in report.quality:
        issues = ", ".join(level.common_issues) or "none"
        typer.echo(f"  {level.level:<9} quality={level.average_quality:.2f} valid={level.valid_rate:.0%} issues: {issues}")
    typer.echo("Recommendations:")
    for recommendation in report.recommendations:
        typer.echo(f"  - {recommendation}")


@app.command()
def simulate(
    frames: int = typer.Option(30, "--frames", "-n", min=1, help="Number of frames to process."),
    drop_every: int = typer.Option(
        0,
        "--drop-every",
        "-k",
        min=0,
        help="Drop every K-th detection to exercise recovery (0 keeps every frame).",
    ),
    width: int = typer.Option(400, "--width", min=1, help="Frame width in pixels."),
    height: int = typer.Option(600, "--height", min=1, help="Frame height in pixels."),
    noise: float = typer.Option(2.0, "--noise", min=0.0, help="Gaussian landmark jitter in pixels."),
    seed: Optional[int] = typer.Option(None, "--seed", help="Seed for the synthetic jitter."),
    config_path: Optional[Path] = typer.Option(None, "--config", help="TOML/JSON tracking config file."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging."),
) -> None:
    """
    Run a tracking session on the synthetic detector and print one row per frame.

    Examples:
        tryon-tracker simulate --frames 60 --drop-every 5
        tryon-tracker simulate --noise 8 --seed 7
    """
    _configure_cli_logging(verbose)
    config = _load_config(config_path)
    clock = _FrameClock()
    detector = _DroppingDetector(
        SyntheticPoseDetector(noise=noise, rng=np.random.default_rng(seed), clock=clock),
        drop_every,
    )
    session = TrackingSession(detector, config, clock=clock)

    results: List[FrameResult] = []
    for _ in range(frames):
        results.append(session.process_frame(None, width, height))
        clock.now += SIMULATED_FRAME_MS

    typer.echo(render_frame_table(results))
    tracked = sum(1 for r in results if not r.tracking_lost)
    recovered = sum(1 for r in results if r.recovered and not r.tracking_lost)
    typer.echo(
        f"Tracked {tracked}/{frames} frames ({recovered} via recovery); "
        f"avg processing {session.metrics().average_processing_time:.2f} ms."
    )


@app.command()
def benchmark(
    frames: int = typer.Option(300, "--frames", "-n", min=1, help="Frames for the performance run."),
    seed: Optional[int] = typer.Option(0, "--seed", help="Seed for the synthetic scenarios."),
    as_json: bool = typer.Option(False, "--json", help="Print the full report as JSON."),
    progress: bool = typer.Option(True, "--progress/--no-progress", help="Show a progress bar."),
    config_path: Optional[Path] = typer.Option(None, "--config", help="TOML/JSON tracking config file."),
) -> None:
    """
    Run the synthetic benchmark suite (performance, stability, recovery, correction, quality).

    Examples:
        tryon-tracker benchmark --frames 500
        tryon-tracker benchmark --seed 3 --json > report.json
    """
    config = _load_config(config_path)
    report = PoseDetectionBenchmark(seed=seed, config=config).run(frames, show_progress=progress and not as_json)
    if as_json:
        typer.echo(json.dumps(report.to_dict(), indent=2))
        return
    _echo_benchmark(report)


@app.command("config")
def config_show(
    config_path: Optional[Path] = typer.Option(None, "--config", help="TOML/JSON tracking config file."),
) -> None:
    """
    Show the effective tracking configuration (defaults, file values and env overrides).
    """
    config = _load_config(config_path)
    payload = config_as_dict(config, source=config_path)
    typer.echo(f"Config source: {payload.pop('source')}")
    for key, value in payload.items():
        typer.echo(f"{key}: {value}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
