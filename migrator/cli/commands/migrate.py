# migrator/cli/commands/migrate.py

"""
Migration CLI Commands

Exit codes: 0 when the work queue is empty, 1 on input, lock, config or
persistence errors, 130 when interrupted.
"""

import click
import sys
from functools import wraps
from pathlib import Path

from ...core.errors import MigratorError, LockHeldError


EXIT_ERROR = 1
EXIT_INTERRUPTED = 130


def handle_errors(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LockHeldError as e:
            click.echo(f"🔒 {e}", err=True)
            click.echo("   Another run holds the lock. Remove the lock file only if no run is active.", err=True)
            sys.exit(EXIT_ERROR)
        except MigratorError as e:
            click.echo(f"❌ {type(e).__name__}: {e}", err=True)
            sys.exit(EXIT_ERROR)
        except ConnectionError as e:
            click.echo(f"❌ Ledger unreachable: {e}", err=True)
            sys.exit(EXIT_ERROR)
        except KeyboardInterrupt:
            click.echo("\n⚠️  Interrupted. Progress is saved; rerun to resume.", err=True)
            sys.exit(EXIT_INTERRUPTED)
    return wrapper


def make_runner(ctx, **overrides):
    from ...pipeline.runner import MigrationRunner
    return MigrationRunner(
        job_name=ctx.obj.get('job'),
        config_path=ctx.obj.get('config_path'),
        echo=click.echo,
        **overrides,
    )


def job_overrides(snapshots, progress, capacity, unit, policy):
    overrides = {
        'capacity_bound': capacity,
        'capacity_unit': unit,
        'packing_policy': policy,
    }
    if snapshots:
        overrides['snapshots'] = [str(Path(s).resolve()) for s in snapshots]
    if progress:
        overrides['progress_file'] = str(Path(progress).resolve())
    return overrides


def job_options(func):
    func = click.option('--snapshot', 'snapshots', multiple=True, type=click.Path(dir_okay=False),
                        help='Snapshot file (repeatable, replaces the job file list)')(func)
    func = click.option('--progress', type=click.Path(dir_okay=False), help='Progress file path')(func)
    func = click.option('--capacity', type=click.IntRange(min=1), help='Batch capacity bound')(func)
    func = click.option('--unit', type=click.Choice(['entries', 'quantity']), help='Capacity unit')(func)
    func = click.option('--policy', type=click.Choice(['round_robin', 'owner_count']), help='Packing policy')(func)
    return func


@click.command('run')
@job_options
@click.option('--dry-run', is_flag=True, help='Record batches without writing to the ledger')
@click.option('--max-retries', type=click.IntRange(min=0), help='Retries after the first attempt')
@click.option('--retry-delay', type=click.FloatRange(min=0), help='Seconds between attempts')
@click.pass_context
@handle_errors
def run(ctx, snapshots, progress, capacity, unit, policy, dry_run, max_retries, retry_delay):
    """Apply all outstanding entries, resuming from the progress file

    Examples:
        # Preview a full run without touching the ledger
        migrator --job wearables run --dry-run

        # Smaller batches with more patience
        migrator --job aavegotchis run --capacity 100 --max-retries 5
    """
    runner = make_runner(
        ctx,
        dry_run=True if dry_run else None,
        max_retries=max_retries,
        retry_delay=retry_delay,
        **job_overrides(snapshots, progress, capacity, unit, policy),
    )
    runner.run()


@click.command('plan')
@job_options
@click.option('--show-batches', is_flag=True, help='List every planned batch')
@click.pass_context
@handle_errors
def plan(ctx, snapshots, progress, capacity, unit, policy, show_batches):
    """Show the batches the next run would submit"""
    runner = make_runner(ctx, **job_overrides(snapshots, progress, capacity, unit, policy))
    runner.plan(show_batches=show_batches)


@click.command('status')
@click.option('--progress', type=click.Path(dir_okay=False), help='Progress file path')
@click.pass_context
@handle_errors
def status(ctx, progress):
    """Show progress metrics for a job"""
    runner = make_runner(ctx, **job_overrides((), progress, None, None, None))
    runner.status()


@click.command('failed')
@click.option('--progress', type=click.Path(dir_okay=False), help='Progress file path')
@click.option('--limit', type=click.IntRange(min=1), help='Show at most this many rows')
@click.pass_context
@handle_errors
def failed(ctx, progress, limit):
    """List permanently failed entries and failed batches"""
    runner = make_runner(ctx, **job_overrides((), progress, None, None, None))
    runner.failed(limit=limit)


@click.command('reset-failed')
@click.option('--progress', type=click.Path(dir_okay=False), help='Progress file path')
@click.confirmation_option(prompt='Re-queue all permanently failed entries?')
@click.pass_context
@handle_errors
def reset_failed(ctx, progress):
    """Clear permanently failed entries so the next run retries them"""
    runner = make_runner(ctx, **job_overrides((), progress, None, None, None))
    runner.reset_failed()
