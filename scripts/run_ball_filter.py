#!/usr/bin/env python3
"""
CLI script for running the ball filter on a synthetic scenario.

Simulates a rolling ball seen by a walking robot, feeds every control cycle
through the multi-hypothesis ball filter and reports tracking accuracy,
hypothesis statistics and cycle timing.
"""

import json
import sys
from pathlib import Path

import click
import numpy as np

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from ball_tracking.simulation.ball_scenario import BallScenario
from ball_tracking.tracking import BallFilter
from ball_tracking.utils.config_loader import BallFilterConfig, Config, SimulationConfig
from ball_tracking.utils.logging_config import LogConfig, get_logger
from ball_tracking.utils.metrics import position_error, position_rmse

logger = get_logger("tracking")


@click.command()
@click.option(
    '--config-dir',
    '-c',
    default='config',
    type=click.Path(),
    help='Directory with ball_filter.yaml and simulation.yaml'
)
@click.option(
    '--output',
    '-o',
    default=None,
    type=click.Path(),
    help='Write a JSON report to this file'
)
@click.option(
    '--duration',
    '-d',
    type=float,
    help='Scenario duration (seconds), overrides the config'
)
@click.option(
    '--seed',
    type=int,
    help='Random seed, overrides the config'
)
@click.option(
    '--gating',
    type=click.Choice(['both', 'moving', 'resting']),
    help='Gating policy, overrides the config'
)
@click.option(
    '--verbose',
    '-v',
    is_flag=True,
    help='Verbose output'
)
def main(config_dir, output, duration, seed, gating, verbose):
    """
    Run the ball filter on a simulated rolling ball.

    Examples:
        # Default scenario
        python scripts/run_ball_filter.py

        # Longer run with a JSON report
        python scripts/run_ball_filter.py -d 20 -o results/ball_filter.json

        # Gate only against the moving model
        python scripts/run_ball_filter.py --gating moving
    """
    LogConfig.setup(log_level="DEBUG" if verbose else "WARNING")

    click.echo("╔" + "═" * 78 + "╗")
    click.echo("║" + "  ⚽  BALL FILTER - Multi-Hypothesis Ball Tracking".center(78) + "║")
    click.echo("╚" + "═" * 78 + "╝")
    click.echo()

    # Load configuration
    config_manager = Config(Path(config_dir))
    filter_config = config_manager.load_config("ball_filter.yaml", BallFilterConfig)
    simulation_config = config_manager.load_config("simulation.yaml", SimulationConfig)

    if duration is not None:
        simulation_config.duration_seconds = duration
    if seed is not None:
        simulation_config.seed = seed
    if gating is not None:
        filter_config.gating_policy = gating

    click.echo("⚙️  Configuration:")
    click.echo(f"   • Duration: {simulation_config.duration_seconds:.1f}s")
    click.echo(f"   • Gating: {filter_config.gating_policy} ({filter_config.measurement_matching_distance}m)")
    click.echo(f"   • Merge distance: {filter_config.hypothesis_merge_distance}m")
    click.echo()

    # Simulate
    frames = BallScenario(simulation_config).generate()
    ball_filter = BallFilter(filter_config)

    errors = []
    cycles_with_ball = 0
    lost_track_events = 0
    max_hypotheses = 0

    with click.progressbar(frames, label='Filtering') as bar:
        for frame in bar:
            result = ball_filter.cycle(
                now=frame.time,
                delta_time=frame.delta_time,
                last_to_current_odometry=frame.odometry,
                measurements=frame.measurements,
                cameras=frame.cameras,
            )

            max_hypotheses = max(max_hypotheses, len(result.hypotheses))
            lost_track_events += len(result.removed_ball_positions)

            if result.ball_position is not None:
                cycles_with_ball += 1
                errors.append(position_error(result.ball_position.position, frame.true_position))

    click.echo()

    stats = ball_filter.get_statistics()
    report = {
        'cycles': len(frames),
        'cycles_with_ball': cycles_with_ball,
        'position_rmse': position_rmse(errors),
        'position_error_max': float(np.max(errors)) if errors else None,
        'lost_track_events': lost_track_events,
        'max_hypotheses': max_hypotheses,
        'total_spawned': stats['total_spawned'],
        'total_removed': stats['total_removed'],
        'total_merged': stats['total_merged'],
        'cycle_time_mean_ms': stats['cycle_time'].get('mean', 0.0) * 1000.0,
        'cycle_time_max_ms': stats['cycle_time'].get('max', 0.0) * 1000.0,
        'cycle_time_p95_ms': stats['cycle_time'].get('p95', 0.0) * 1000.0,
    }

    logger.info(
        f"Run complete: {cycles_with_ball}/{len(frames)} cycles with ball, "
        f"{stats['total_spawned']} hypotheses spawned"
    )

    click.echo("📊 Results:")
    click.echo(f"   • Ball reported in {cycles_with_ball}/{len(frames)} cycles")
    if errors:
        click.echo(f"   • Position RMSE: {report['position_rmse']:.3f}m (max {report['position_error_max']:.3f}m)")
    click.echo(f"   • Hypotheses spawned/removed/merged: "
               f"{stats['total_spawned']}/{stats['total_removed']}/{stats['total_merged']}")
    click.echo(f"   • Cycle time: {report['cycle_time_mean_ms']:.3f}ms mean, "
               f"{report['cycle_time_max_ms']:.3f}ms max")
    click.echo()

    if output:
        output_path = Path(output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w') as f:
            json.dump(report, f, indent=2)
        click.echo(f"💾 Report saved to {output_path}")


if __name__ == "__main__":
    main()
