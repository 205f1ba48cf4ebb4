# migrator/cli/__main__.py

"""
Migration CLI Tool

Usage: python -m migrator.cli [--job NAME] [command] [options]

Runs checkpointed batch migrations and inspects their progress files.
"""

import click
import os
from pathlib import Path

from migrator.core.logging import MigratorLogger


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--job', envvar='MIGRATOR_JOB', help='Migration job name (from the job file)')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False, path_type=Path),
              envvar='MIGRATOR_CONFIG', help='Job file (default: ./migrations.yaml)')
@click.pass_context
def cli(ctx, verbose, job, config_path):
    """Migration CLI - Checkpointed batch migrations

    Applies a snapshot of owner holdings to a target ledger in bounded
    batches, resuming from the progress file after any interruption:
    - run / plan: apply or preview the outstanding work
    - status / failed: inspect a job's progress file
    - reset-failed: re-queue permanently failed entries
    - steps: one-shot step flags for multi-step migrations
    """
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    ctx.obj['job'] = job
    ctx.obj['config_path'] = config_path

    log_level = "DEBUG" if verbose else os.environ.get("MIGRATOR_LOG_LEVEL", "INFO")
    MigratorLogger.configure(
        log_dir=Path(os.environ.get("MIGRATOR_LOG_DIR", Path.cwd() / "logs")),
        log_level=log_level,
        console_enabled=True,
        file_enabled=os.environ.get("MIGRATOR_LOG_FILE", "false").lower() == "true",
        structured_format=verbose,
    )


# Import commands
from migrator.cli.commands.migrate import run, plan, status, failed, reset_failed
from migrator.cli.commands.steps import steps

# Register commands
cli.add_command(run)
cli.add_command(plan)
cli.add_command(status)
cli.add_command(failed)
cli.add_command(reset_failed)
cli.add_command(steps)


if __name__ == '__main__':
    cli()
